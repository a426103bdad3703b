"""Prompt templates and tool definitions sent to the upstream provider."""

from typing import Iterable


# =============================================================================
# Attraction discovery
# =============================================================================

ATTRACTIONS_SYSTEM = (
    "You are a helpful travel assistant that provides information about top "
    "attractions in cities, including their precise coordinates."
)

ADD_MARKER_TOOL_NAME = "addMapMarker"

ADD_MARKER_TOOL = {
    "type": "function",
    "function": {
        "name": ADD_MARKER_TOOL_NAME,
        "description": "Add a marker for an attraction on the map",
        "parameters": {
            "type": "object",
            "properties": {
                "name": {
                    "type": "string",
                    "description": "The name of the attraction",
                },
                "description": {
                    "type": "string",
                    "description": "A brief description of the attraction",
                },
                "longitude": {
                    "type": "number",
                    "description": "The longitude coordinate of the attraction",
                },
                "latitude": {
                    "type": "number",
                    "description": "The latitude coordinate of the attraction",
                },
            },
            "required": ["name", "description", "longitude", "latitude"],
        },
    },
}


def attractions_prompt(city: str) -> str:
    return (
        f"Identify the top 3 must-visit attractions in {city}. For each attraction, "
        "provide its name, a brief description, and its precise coordinates "
        f"(longitude and latitude). Use the {ADD_MARKER_TOOL_NAME} function to add "
        "each attraction to the map."
    )


# =============================================================================
# Adventure narrative
# =============================================================================

ADVENTURE_SYSTEM = "You are a creative travel guide that creates engaging mystery adventures."


def adventure_prompt(city: str, attraction_names: Iterable[str]) -> str:
    names = ", ".join(attraction_names)
    return f"""Create a mystery adventure story that connects these 3 attractions in {city}: {names}.

The story should have 5 parts:
1. Introduction to the first landmark
2. A clue that leads to the second landmark
3. Description of the second landmark
4. A clue that leads to the third landmark
5. Description of the third landmark and conclusion

Format the response as a JSON object with an array called "cards". Each card should have "type" (either "landmark" or "clue"), "title", and "content" properties."""


def image_prompt(title: str, city: str) -> str:
    return f"A stylized image of {title} in {city}. Dramatic and atmospheric."


# =============================================================================
# Ambient facts
# =============================================================================

FACTS_SYSTEM = (
    "You are a knowledgeable travel guide that provides interesting and factual "
    "information about landmarks and locations."
)


def fact_prompt(location: str, city: str, user_input: str = "") -> str:
    """Prompt for a follow-up fact, answering the user's question when there is one."""
    if user_input and user_input.strip():
        return (
            f'The user asked: "{user_input.strip()}" about {location} in {city}. '
            "Respond directly to their question with relevant information. "
            "If they're asking for general information, provide 1 interesting fact "
            "about this location."
        )
    return f"Provide 1 interesting fact about {location} in {city}."


# =============================================================================
# Intent classification
# =============================================================================


def intent_system(card_kind: str) -> str:
    return f"""You are an AI assistant that processes user input for a mystery adventure game and returns JSON.
The user is currently viewing a {card_kind} card.
Determine if the user wants to:
1. Learn more about the current location (action: learn_more)
2. Move to the next card (action: next)
3. Something else (action: other)

Also generate a helpful response to the user's input that acknowledges what they said.

Return a JSON object with:
1. The determined action
2. A response text that directly addresses the user's input in a conversational way

Example response format:
{{
  "action": "learn_more",
  "responseText": "I'd be happy to tell you more about this landmark! Here's some additional information..."
}}"""
