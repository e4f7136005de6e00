# =============================================================================
# Expertise Tags — Controlled Vocabulary, Extraction, Generation
# =============================================================================
#
# Experts and requests are both labelled from one fixed vocabulary. Two ways
# to derive tags from free text:
#
#   extract_expertise_tags()  — case-insensitive substring match against the
#                               vocabulary, no provider call
#   generate_expertise_tags() — asks the "tag-model" to pick tags, then
#                               keeps only vocabulary entries; falls back to
#                               extraction if the provider fails
#
# Results are always in vocabulary order, without duplicates.
# =============================================================================

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from expertqa.errors import ProviderError, ValidationError
from expertqa.services.llm import LLMProvider, generate_structured_object

logger = logging.getLogger(__name__)

EXPERTISE_TAGS: dict[str, list[str]] = {
    "technology": [
        "Web Development",
        "Mobile Development",
        "Machine Learning",
        "Data Science",
        "Cybersecurity",
        "DevOps",
        "Cloud Computing",
        "Blockchain",
        "UX/UI Design",
        "Game Development",
        "AR/VR",
        "IoT",
        "Database Administration",
        "Network Engineering",
    ],
    "business": [
        "Marketing",
        "Finance",
        "Entrepreneurship",
        "Project Management",
        "Human Resources",
        "Sales",
        "Product Management",
        "Business Strategy",
        "Supply Chain",
        "E-commerce",
        "Consulting",
    ],
    "healthcare": [
        "Medicine",
        "Nursing",
        "Pharmacy",
        "Public Health",
        "Mental Health",
        "Nutrition",
        "Physical Therapy",
        "Biotechnology",
        "Healthcare Administration",
    ],
    "science": [
        "Physics",
        "Chemistry",
        "Biology",
        "Astronomy",
        "Environmental Science",
        "Mathematics",
        "Statistics",
        "Research Methodology",
        "Neuroscience",
    ],
    "creative": [
        "Graphic Design",
        "Content Creation",
        "Video Production",
        "Photography",
        "Illustration",
        "Animation",
        "Creative Writing",
        "Music Production",
        "Filmmaking",
    ],
    "education": [
        "Teaching",
        "Curriculum Development",
        "Educational Technology",
        "E-learning",
        "Language Teaching",
        "Academic Research",
        "Special Education",
    ],
    "legal": [
        "Law",
        "Intellectual Property",
        "Contracts",
        "Corporate Law",
        "International Law",
        "Compliance",
    ],
    "other": [
        "Agriculture",
        "Architecture",
        "Construction",
        "Culinary Arts",
        "Fashion",
        "Journalism",
        "Languages",
        "Philosophy",
        "Psychology",
        "Social Work",
        "Sports & Fitness",
        "Translation",
        "Travel & Tourism",
    ],
}

ALL_EXPERTISE_TAGS: list[str] = [tag for group in EXPERTISE_TAGS.values() for tag in group]

_TAG_SET = frozenset(ALL_EXPERTISE_TAGS)

MIN_DESCRIPTION_LENGTH = 10
MAX_DESCRIPTION_LENGTH = 500


class GeneratedTags(BaseModel):
    tags: list[str] = Field(description="List of relevant expertise tags")


def _in_vocabulary_order(tags) -> list[str]:
    wanted = set(tags)
    return [tag for tag in ALL_EXPERTISE_TAGS if tag in wanted]


def validate_tags(tags: list[str]) -> list[str]:
    """
    Check every tag is in the vocabulary and drop duplicates.

    Caller order is kept. Raises ValidationError naming the unknown tags.
    """
    unknown = [t for t in tags if t not in _TAG_SET]
    if unknown:
        raise ValidationError(f"Unknown expertise tags: {', '.join(unknown)}")
    return list(dict.fromkeys(tags))


def extract_expertise_tags(text: str) -> list[str]:
    """Vocabulary tags mentioned anywhere in `text` (case-insensitive)."""
    if not text:
        return []
    lowered = text.lower()
    return [tag for tag in ALL_EXPERTISE_TAGS if tag.lower() in lowered]


async def generate_expertise_tags(provider: LLMProvider, description: str) -> list[str]:
    """
    Ask the tag model which vocabulary tags fit a free-text description.

    Raises:
        ValidationError: If the description is outside 10–500 characters.
    """
    description = (description or "").strip()
    if not MIN_DESCRIPTION_LENGTH <= len(description) <= MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Expertise description must be {MIN_DESCRIPTION_LENGTH}–"
            f"{MAX_DESCRIPTION_LENGTH} characters"
        )

    prompt = (
        "Given the following description of a user's expertise, identify the "
        "most relevant tags from the provided list. Only return tags that are "
        "highly relevant.\n\n"
        f"Available tags: {', '.join(ALL_EXPERTISE_TAGS)}\n\n"
        f'User expertise description: "{description}"\n\n'
        "Generate a list of 10-20 most relevant tags."
    )

    try:
        result = await generate_structured_object(
            provider, prompt, GeneratedTags, max_tokens=200,
        )
    except ProviderError as e:
        logger.warning("Tag generation failed, using keyword extraction: %s", e)
        return extract_expertise_tags(description)

    return _in_vocabulary_order(t for t in result.tags if t in _TAG_SET)
