"""
Property assistant: decides what the search found, asks the text generator
for a reply and falls back to canned replies when it cannot.
"""
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from pymongo.database import Database

from config import Settings
from database import serialize_doc
from errors import UpstreamFailure
from llm import TextGenerator
from schemas import ChatTurn
from search import find_alternatives, search_properties

logger = logging.getLogger(__name__)

HISTORY_TURNS = 6
PROMPT_PROPERTIES = 3
MAX_SUGGESTIONS = 4

GENERIC_SUGGESTIONS = [
    "Contact information",
    "Schedule a property visit",
    "What amenities are available?",
]


class SearchStatus(str, Enum):
    EXACT_MATCH = "EXACT_MATCH"
    NO_EXACT_MATCH_BUT_ALTERNATIVES = "NO_EXACT_MATCH_BUT_ALTERNATIVES"
    NO_RESULTS = "NO_RESULTS"


def search_status(matches: Sequence[dict], alternatives: Sequence[dict]) -> SearchStatus:
    if matches:
        return SearchStatus.EXACT_MATCH
    if alternatives:
        return SearchStatus.NO_EXACT_MATCH_BUT_ALTERNATIVES
    return SearchStatus.NO_RESULTS


@dataclass(frozen=True)
class CompanyInfo:
    name: str = "Hi-Tech Homes"
    phone: str = "+91 98765 43210"
    email: str = "info@hitechhomes.com"
    location: str = "Mumbai, India"

    @classmethod
    def from_settings(cls, settings: Settings) -> "CompanyInfo":
        return cls(
            name=settings.company_name,
            phone=settings.company_phone,
            email=settings.company_email,
            location=settings.company_location,
        )


def format_price(price: Any) -> str:
    try:
        return f"₹{float(price):,.0f}"
    except (TypeError, ValueError):
        return "Price on request"


def describe_property(index: int, p: Dict[str, Any]) -> str:
    amenities = ", ".join(p.get("amenities") or []) or "Basic amenities"
    return (
        f"{index}. {p.get('title')}\n"
        f"   Price: {format_price(p.get('price'))}\n"
        f"   Config: {p.get('bhk')} BHK, {p.get('bathrooms')} Bathrooms\n"
        f"   Location: {p.get('city')}, {p.get('address', '')}\n"
        f"   Area: {p.get('area') or 'Not specified'}\n"
        f"   Amenities: {amenities}"
    )


def _contains(text: str, words: Sequence[str]) -> bool:
    return any(w in text for w in words)


def _mentions(text: str, words: Sequence[str]) -> bool:
    """Whole-word match, allowing a plural s; "recall" does not mention "call"."""
    pattern = r"\b(?:" + "|".join(re.escape(w) for w in words) + r")s?\b"
    return re.search(pattern, text) is not None


GREETING_RE = re.compile(r"\b(hello|hi|hey)\b")


class ChatResponder:
    def __init__(self, generator: Optional[TextGenerator], company: Optional[CompanyInfo] = None):
        self.generator = generator
        self.company = company or CompanyInfo()

    # ---------- Prompt ----------
    def system_prompt(self, status: SearchStatus, matches: Sequence[dict], alternatives: Sequence[dict]) -> str:
        c = self.company
        parts = [
            f"You are an intelligent property assistant for the {c.name} real estate website. "
            "Answer naturally, help users find properties that fit their requirements, and give "
            "details about pricing, locations and amenities. When there is no exact match, say so "
            "politely and offer the alternatives.",
            "",
            "Company Information:",
            f"- Name: {c.name}",
            f"- Phone: {c.phone}",
            f"- Email: {c.email}",
            f"- Location: {c.location}",
            "",
            f"SEARCH STATUS: {status.value}",
            "",
        ]
        if status is SearchStatus.EXACT_MATCH:
            parts.append("PERFECT MATCHES FOUND:")
            parts.extend(describe_property(i, p) for i, p in enumerate(matches[:PROMPT_PROPERTIES], 1))
            parts.append("Present these properties enthusiastically, they are what the user asked for.")
        elif status is SearchStatus.NO_EXACT_MATCH_BUT_ALTERNATIVES:
            parts.append("NO EXACT MATCHES for the user's requirements. ALTERNATIVE SUGGESTIONS:")
            parts.extend(describe_property(i, p) for i, p in enumerate(alternatives[:PROMPT_PROPERTIES], 1))
            parts.append(
                "First apologise that there is no exact match, explain what differs (price, BHK, "
                "location), present these as close matches and ask whether they want to adjust "
                "their budget or requirements."
            )
        else:
            parts.append(
                "NO PROPERTIES FOUND and no suitable alternatives. Apologise, suggest calling "
                f"{c.phone}, offer to notify them when something matching is listed, and suggest a "
                "different budget, BHK or location, or our latest properties."
            )
        parts.extend([
            "",
            "CONVERSATION STYLE: warm and concise (2-4 sentences), answer directly, always end with "
            f"a helpful follow-up question. For contact queries give Phone: {c.phone}, Email: {c.email}.",
        ])
        return "\n".join(parts)

    def build_messages(
        self,
        message: str,
        history: Sequence[ChatTurn],
        matches: Sequence[dict],
        alternatives: Sequence[dict],
    ) -> List[Dict[str, str]]:
        status = search_status(matches, alternatives)
        messages = [{"role": "system", "content": self.system_prompt(status, matches, alternatives)}]
        turns = [t for t in history if t.type != "system"][-HISTORY_TURNS:]
        for turn in turns:
            messages.append({"role": "user" if turn.type == "user" else "assistant", "content": turn.text})
        messages.append({"role": "user", "content": message})
        return messages

    # ---------- Replies ----------
    def reply(
        self,
        message: str,
        history: Sequence[ChatTurn],
        matches: Sequence[dict],
        alternatives: Sequence[dict],
    ) -> str:
        if self.generator is None:
            logger.warning("No text generator configured, using canned reply")
            return self.fallback_reply(message, matches, alternatives)
        try:
            return self.generator.generate(self.build_messages(message, history, matches, alternatives))
        except UpstreamFailure as e:
            logger.warning("Text generation failed, using canned reply: %s", e)
            return self.fallback_reply(message, matches, alternatives)
        except Exception:
            logger.exception("Text generator raised unexpectedly, using canned reply")
            return self.fallback_reply(message, matches, alternatives)

    def fallback_reply(self, message: str, matches: Sequence[dict], alternatives: Sequence[dict]) -> str:
        c = self.company
        text = message.lower()

        if matches:
            p = matches[0]
            noun = "property" if len(matches) == 1 else "properties"
            return (
                f"Great news! I found {len(matches)} {noun} that match your requirements!\n\n"
                f"Top match: \"{p.get('title')}\"\n"
                f"Price: {format_price(p.get('price'))}\n"
                f"{p.get('bhk')} BHK, {p.get('bathrooms')} Bath\n"
                f"Location: {p.get('city')}\n\n"
                "Check out the property cards below for full details! "
                "Would you like to know more about any of these properties?"
            )

        if alternatives:
            a = alternatives[0]
            noun = "property" if len(alternatives) == 1 else "properties"
            return (
                "I'm sorry, we don't have properties that exactly match your requirements right now.\n\n"
                f"However, I found {len(alternatives)} similar {noun} you might like!\n\n"
                f"Closest match: \"{a.get('title')}\"\n"
                f"{format_price(a.get('price'))}\n"
                f"{a.get('bhk')} BHK in {a.get('city')}\n\n"
                "Would you like to see these alternatives, or should I help you adjust your search?"
            )

        if _mentions(text, ("contact", "phone", "call", "dealer")):
            return (
                f"Contact {c.name}:\n\n"
                f"• Phone: {c.phone}\n• Email: {c.email}\n• Location: {c.location}\n\n"
                "Our team is ready to assist you! You can also open any property to contact the "
                "dealer directly. How else can I help you?"
            )

        if _mentions(text, ("amenities", "features", "facilities")):
            return (
                "Our properties come with premium amenities:\n\n"
                "• Parking spaces\n• 24/7 Security\n• Gymnasium\n• Swimming pool\n"
                "• Landscaped gardens\n• Power backup\n\n"
                "Each property has different amenities. Want to search for properties with "
                "specific features?"
            )

        if _mentions(text, ("visit", "schedule", "viewing", "tour")):
            return (
                "I'd love to help you schedule a property visit!\n\n"
                f"Please contact us:\nCall: {c.phone}\nEmail: {c.email}\n\n"
                "Or fill out the enquiry form on our Contact page and our team will arrange a "
                "convenient time. What type of property are you interested in?"
            )

        if _mentions(text, ("about", "who are you", "company")):
            return (
                f"{c.name} - your trusted real estate partner!\n\n"
                "We specialize in:\n• Premium residential properties\n• Expert property consultation\n"
                "• Transparent dealings\n• Customer satisfaction\n\n"
                f"Contact: {c.phone}\nEmail: {c.email}\n\n"
                "How can I help you find your dream home today?"
            )

        if _mentions(text, ("process", "how to buy", "procedure")):
            return (
                "Our property buying process:\n\n"
                "1. Browse & shortlist properties\n2. Contact our dealer\n3. Schedule a property visit\n"
                "4. Document verification\n5. Finalize the deal\n\n"
                f"Our team guides you through each step. Call {c.phone} for personalized assistance. "
                "What type of property interests you?"
            )

        if _contains(text, ("bhk", "lakh", "crore", "property", "flat")):
            return (
                "I apologize, but we don't currently have properties matching your specific "
                "requirements.\n\nLet me help you find alternatives:\n"
                "• Adjust your budget range?\n• Try a different BHK?\n"
                "• Explore other locations?\n• See our latest properties?\n\n"
                f"Call us at {c.phone} and we'll find the perfect match for you!"
            )

        if GREETING_RE.search(text):
            return (
                f"Hello! Welcome to {c.name}! I'm here to help you find your dream property. "
                "What are you looking for today?"
            )

        if "thank" in text:
            return (
                "You're very welcome! If you have any more questions about properties, feel free "
                "to ask. Happy house hunting!"
            )

        return (
            "I'm here to help you find your perfect property!\n\nYou can ask me:\n"
            "• \"Show me 2 BHK under 50 lakh\"\n• \"Properties in Mumbai\"\n"
            "• \"What amenities are available?\"\n• \"Contact information\"\n"
            "• \"Schedule a property visit\"\n\n"
            f"Or call us: {c.phone}\n\nWhat can I help you with?"
        )


def follow_up_suggestions(query: str, matches: Sequence[dict], alternatives: Sequence[dict]) -> List[str]:
    suggestions: List[str] = []
    text = query.lower()

    if matches:
        first = matches[0]
        if first.get("bhk") == 2:
            suggestions.append("Show me 3 BHK properties")
        elif first.get("bhk") == 3:
            suggestions.append("Show me 2 BHK properties")
        if first.get("city"):
            suggestions.append(f"More properties in {first['city']}")
        price = first.get("price")
        if price is not None:
            if price < 5_000_000:
                suggestions.append("Properties under 50 lakh")
            elif price < 10_000_000:
                suggestions.append("Properties 50-100 lakh")
    elif not alternatives:
        if "bhk" in text:
            suggestions.append("Show me all available properties")
        if "lakh" in text or "crore" in text:
            suggestions.append("What's your latest property?")
        suggestions.append("Contact information")
        suggestions.append("Schedule a property visit")
    else:
        suggestions.append("Show me all available properties")
        suggestions.append("Contact a dealer")
        suggestions.append("What amenities are available?")

    for s in GENERIC_SUGGESTIONS:
        if len(suggestions) >= MAX_SUGGESTIONS:
            break
        if s not in suggestions:
            suggestions.append(s)

    return suggestions[:MAX_SUGGESTIONS]


def handle_chat_message(
    db: Database,
    responder: ChatResponder,
    message: str,
    history: Optional[Sequence[ChatTurn]] = None,
) -> Dict[str, Any]:
    """Search, fall back to alternatives, then compose the reply and chips."""
    history = history or []
    matches = search_properties(db, message)
    logger.info("Chat search found %d properties", len(matches))

    alternatives: List[dict] = []
    if not matches:
        alternatives = find_alternatives(db, message)
        logger.info("Alternative suggestions: %d", len(alternatives))

    reply = responder.reply(message, history, matches, alternatives)
    suggestions = follow_up_suggestions(message, matches, alternatives)
    shown = matches[:PROMPT_PROPERTIES] or alternatives[:PROMPT_PROPERTIES]

    return {
        "status": search_status(matches, alternatives).value,
        "reply": reply,
        "properties": [serialize_doc(p) for p in shown] or None,
        "suggestions": suggestions or None,
    }
