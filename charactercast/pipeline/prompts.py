"""
Persona descriptions and generation prompts for each character type.
"""

from typing import Optional

from .models import CharacterType


def _attr(attributes: dict, name: str, default: str = "") -> str:
    return str(attributes.get(name) or default).strip()


def describe_character(character_type: CharacterType, attributes: dict) -> str:
    """Short noun phrase, e.g. "a Playful Dog"."""
    if character_type == CharacterType.BABY:
        return f"a {_attr(attributes, 'ethnicity')} baby with {_attr(attributes, 'babyHair')} hair"
    if character_type == CharacterType.ANIMAL:
        return f"a {_attr(attributes, 'trait')} {_attr(attributes, 'species')}"
    if character_type == CharacterType.HISTORICAL:
        return f"a {_attr(attributes, 'nationality')} person from the {_attr(attributes, 'era')} era"
    return "an interesting character"


# ── Script ───────────────────────────────────────────────────────────────────

SCRIPT_PREAMBLE = (
    "You are an expert scriptwriter specializing in creating humorous, educational, "
    "and engaging podcast scripts."
)

SCRIPT_USER_PROMPT = """Generate a podcast-style monologue discussing the topic of {topic}. \
The tone is casual, intense and slightly conspiratorial, with tangents, unexpected analogies \
and the odd deep existential question, like a long-form podcast host thinking out loud.

Avoid line breaks, special characters, or formatting that would invalidate the JSON structure. \
Keep it flowing naturally as if it's a segment from a podcast episode.
Output the entire monologue as a single JSON object with one key, "Podcast", and keep it to \
ONLY 500 characters."""


def script_system_prompt(character_type: CharacterType, attributes: dict) -> str:
    if character_type == CharacterType.BABY:
        persona = (
            f"Your task is to write a 1-2 minute entertaining monologue from the perspective of "
            f"a {_attr(attributes, 'ethnicity')} baby with {_attr(attributes, 'babyHair')} hair.\n"
            "The monologue should be in first person with cute baby mispronunciations and simple "
            "vocabulary, focusing on the topic provided.\n"
            "Make it adorable, innocent, and funny - as if a baby is attempting to explain a complex topic.\n\n"
            "Imagine a grown-up podcast host pretending to be a baby while still sounding like themselves."
        )
    elif character_type == CharacterType.ANIMAL:
        species = _attr(attributes, "species")
        persona = (
            f"Your task is to write a 1-2 minute entertaining monologue from the perspective of "
            f"a {_attr(attributes, 'trait')} {species}.\n"
            "The monologue should incorporate animal-specific mannerisms, perspectives, and "
            "references related to the species.\n"
            "Make it both humorous and informative, with the animal bringing its unique point of view to the topic.\n\n"
            f"Imagine a podcast host taking on the personality of a {species} while still sounding like themselves."
        )
    elif character_type == CharacterType.HISTORICAL:
        era = _attr(attributes, "era")
        nationality = _attr(attributes, "nationality")
        persona = (
            f"Your task is to write a 1-2 minute entertaining monologue from the perspective of "
            f"a {era} era {nationality} historical figure.\n"
            "Use period-appropriate language, references, and viewpoints while still making it "
            "accessible to modern audiences.\n"
            "The historical figure should bring their unique perspective to the contemporary topic, "
            "creating both humor and insight."
        )
    else:
        persona = (
            "Your task is to write a 1-2 minute entertaining monologue from the perspective of "
            f"{describe_character(character_type, attributes)}.\n"
            "The monologue should be in the first person and focus on the topic provided."
        )
    return f"{SCRIPT_PREAMBLE}\n{persona}"


def script_user_prompt(topic: str) -> str:
    return SCRIPT_USER_PROMPT.format(topic=topic)


# ── Image ────────────────────────────────────────────────────────────────────

def image_prompt(character_type: CharacterType, attributes: dict) -> str:
    if character_type == CharacterType.BABY:
        return (
            f"Generate a high resolution image of a very cute chubby {_attr(attributes, 'babyHair')} hair "
            f"{_attr(attributes, 'ethnicity')} baby wearing large over-ear headphones speaking into a "
            "professional podcast microphone. The baby should be sitting in a professional podcast studio "
            "with appropriate lighting and background."
        )
    if character_type == CharacterType.ANIMAL:
        return (
            f"Generate a high resolution image of a {_attr(attributes, 'trait')} {_attr(attributes, 'species')} "
            "wearing headphones in a podcast studio setup. The animal should be positioned in front of a "
            "professional microphone with proper studio lighting and podcast equipment visible in the background."
        )
    if character_type == CharacterType.HISTORICAL:
        return (
            f"Generate a high resolution image of a {_attr(attributes, 'nationality')} historical figure from "
            f"the {_attr(attributes, 'era')} era sitting at a podcast setup with headphones and a professional "
            "microphone. Include period-appropriate elements while maintaining the modern podcast studio "
            "environment with proper lighting."
        )
    return (
        f"Generate a high-quality, photorealistic portrait of {describe_character(character_type, attributes)} "
        "in a professional podcast studio with headphones and microphone. The character should be centered "
        "in the frame with good lighting."
    )


# ── Video ────────────────────────────────────────────────────────────────────

def video_prompt(character_type: CharacterType, topic: Optional[str]) -> str:
    """Expression/motion direction for the talking-head generator."""
    label = character_type.value
    if topic:
        return (
            f"A {label} character talking about {topic}. Natural facial expressions, "
            "appropriate head movements, making eye contact with the camera."
        )
    if character_type == CharacterType.BABY:
        return (
            "A baby podcast host seated in front of a microphone, speaking with calm intensity and "
            "natural focus. Subtle facial expressions, minimal head movement, steady eye contact with the camera."
        )
    if character_type == CharacterType.ANIMAL:
        return (
            "An animal character talking to the camera, with natural facial expressions and movements, "
            "making eye contact with the viewer."
        )
    return (
        f"A {label} character speaking naturally to the camera with appropriate facial expressions "
        "and subtle head movements."
    )
