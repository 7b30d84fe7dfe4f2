"""
Shopping Assistant

Turns a chat message into at most one read-only catalog lookup:

1. the chat model answers with a JSON intent
   {"type": "chat|search|deals|shops", "message": "...", "tool": {...}}
2. the tool, if any, runs against CatalogSearch (search_products,
   get_best_deals, get_top_shops, search_shops and nothing else)
3. the reply is plain text, or {type: products|shops, message, items}

When no language model is configured a keyword based model produces the
same JSON intents.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union
import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.catalog.pricing import primary_image_url
from marketplace.catalog.search import CatalogSearch
from marketplace.database.models import Product, Shop

logger = structlog.get_logger(__name__)

MAX_MESSAGE_LENGTH = 1000
MAX_HISTORY = 20
PRODUCT_LIMIT = 8
SHOP_LIMIT = 6

NO_RESULTS = "Hmm, I couldn't find anything matching that right now. Try different keywords or browse the app!"
APOLOGY = "Sorry, I'm having a little trouble right now. Please try again in a moment!"

ALLOWED_ACTIONS = ("search_products", "get_best_deals", "get_top_shops", "search_shops")

AssistantReply = Union[str, Dict[str, Any]]


@dataclass
class AssistantIntent:
    type: str
    message: str
    tool: Optional[Dict[str, Any]] = None


@dataclass
class ToolResult:
    kind: str  # products | shops
    items: List[Any] = field(default_factory=list)


# =============================================================================
# CHAT MODELS
# =============================================================================

class ChatModel(ABC):
    """Produces a JSON intent for a user message"""

    @abstractmethod
    async def complete(self, message: str, history: List[Dict[str, str]]) -> str:
        ...


class RuleBasedChatModel(ChatModel):
    """Keyword intent detection used when no language model is configured."""

    DEAL_WORDS = ("deal", "discount", "promo", "sale", "offer")
    SHOP_WORDS = ("shop", "store", "seller", "vendor")
    TOP_WORDS = ("best", "top", "recommended", "popular")
    GREETINGS = ("hi", "hello", "hey", "thanks", "thank you")

    UNDER = re.compile(r"(?:under|below|less than|cheaper than|max)\s*\$?(\d+(?:\.\d+)?)")
    OVER = re.compile(r"(?:over|above|more than|at least|min)\s*\$?(\d+(?:\.\d+)?)")
    BETWEEN = re.compile(r"between\s*\$?(\d+(?:\.\d+)?)\s*(?:and|-)\s*\$?(\d+(?:\.\d+)?)")
    FILLER = re.compile(
        r"\b(i|want|need|to|buy|show|me|find|do|you|have|looking|for|some|a|an|the|any|please|"
        r"cheap|affordable|under|below|over|above|between|and|less|more|than|at|least|max|min|"
        r"shops?|stores?|that|sell|with|where|can|get)\b"
    )

    async def complete(self, message: str, history: List[Dict[str, str]]) -> str:
        return json.dumps(self.intent(message))

    def intent(self, message: str) -> Dict[str, Any]:
        text = message.lower().strip()
        words = set(re.findall(r"[a-z']+", text))

        if any(word in text for word in self.DEAL_WORDS):
            return {
                "type": "deals",
                "message": "Here are the best deals right now!",
                "tool": {"action": "get_best_deals", "limit": PRODUCT_LIMIT},
            }

        if any(word in text for word in self.SHOP_WORDS):
            if any(word in words for word in self.TOP_WORDS):
                return {
                    "type": "shops",
                    "message": "Here are our top-rated shops!",
                    "tool": {"action": "get_top_shops", "limit": SHOP_LIMIT},
                }
            return {
                "type": "shops",
                "message": "Let me find some shops for you!",
                "tool": {"action": "search_shops", "query": self.keywords(text) or None, "limit": SHOP_LIMIT},
            }

        if not text or text.strip("!.? ") in self.GREETINGS:
            return {"type": "chat", "message": "Hi there! How can I help you shop today?"}

        min_price, max_price = self.price_range(text)
        query = self.keywords(text)
        if not query and min_price is None and max_price is None:
            return {"type": "chat", "message": "Tell me what you're looking for and I'll search the catalog."}
        return {
            "type": "search",
            "message": "Let me find that for you!",
            "tool": {
                "action": "search_products",
                "query": query,
                "minPrice": min_price,
                "maxPrice": max_price,
                "category": None,
                "limit": PRODUCT_LIMIT,
            },
        }

    def price_range(self, text: str):
        between = self.BETWEEN.search(text)
        if between:
            return float(between.group(1)), float(between.group(2))
        under = self.UNDER.search(text)
        over = self.OVER.search(text)
        return (
            float(over.group(1)) if over else None,
            float(under.group(1)) if under else None,
        )

    def keywords(self, text: str) -> str:
        text = self.BETWEEN.sub(" ", text)
        text = self.UNDER.sub(" ", text)
        text = self.OVER.sub(" ", text)
        text = re.sub(r"[^a-z0-9\s]", " ", text)
        text = self.FILLER.sub(" ", text)
        return " ".join(text.split())


# =============================================================================
# PARSING AND TOOLS
# =============================================================================

def parse_model_output(raw: str) -> AssistantIntent:
    """
    Parse the model's JSON intent.

    Text that is not a JSON object is treated as a plain chat answer. Code
    fences around the JSON are tolerated.
    """
    text = (raw or "").strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\s*|\s*```$", "", text)

    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return AssistantIntent(type="chat", message=raw.strip() if raw else "")
    if not isinstance(payload, dict):
        return AssistantIntent(type="chat", message=str(payload))

    tool = payload.get("tool")
    return AssistantIntent(
        type=str(payload.get("type") or "chat"),
        message=str(payload.get("message") or ""),
        tool=tool if isinstance(tool, dict) else None,
    )


def _as_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _as_uuid(value: Any) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _as_limit(value: Any, default: int) -> int:
    try:
        return max(1, min(int(value), 20))
    except (TypeError, ValueError):
        return default


async def execute_tool(search: CatalogSearch, tool: Optional[Dict[str, Any]]) -> Optional[ToolResult]:
    """Run one of the four read-only lookups; unknown actions return None."""
    if not tool:
        return None
    action = tool.get("action")
    if action not in ALLOWED_ACTIONS:
        logger.warning("Unknown assistant tool", action=action)
        return None

    if action == "search_products":
        products = await search.search_products(
            query=tool.get("query") or "",
            min_price=_as_decimal(tool.get("minPrice")),
            max_price=_as_decimal(tool.get("maxPrice")),
            category_id=_as_uuid(tool.get("category")),
            limit=_as_limit(tool.get("limit"), PRODUCT_LIMIT),
        )
        return ToolResult("products", products)
    if action == "get_best_deals":
        return ToolResult("products", await search.best_deals(_as_limit(tool.get("limit"), PRODUCT_LIMIT)))
    if action == "get_top_shops":
        return ToolResult("shops", await search.top_shops(_as_limit(tool.get("limit"), SHOP_LIMIT)))
    return ToolResult("shops", await search.search_shops(tool.get("query"), _as_limit(tool.get("limit"), SHOP_LIMIT)))


def _excerpt(text: Optional[str], length: int = 100) -> str:
    if not text:
        return ""
    return text if len(text) <= length else text[:length] + "..."


def format_product(product: Product, vendor_name: Optional[str]) -> Dict[str, Any]:
    return {
        "id": str(product.id),
        "name": product.name,
        "price": float(product.price),
        "sale_price": float(product.sale_price) if product.is_on_sale and product.sale_price is not None else None,
        "is_on_sale": bool(product.is_on_sale),
        "vendor": vendor_name or "Marketplace Store",
        "short_description": product.short_description or _excerpt(product.description),
        "image": primary_image_url(product.images) or product.thumbnail,
        "rating": product.average_rating or 0,
    }


def format_shop(shop: Shop) -> Dict[str, Any]:
    return {
        "id": str(shop.id),
        "name": shop.name,
        "slug": shop.slug,
        "description": _excerpt(shop.description),
        "logo": shop.logo,
        "banner": shop.banner,
        "rating": shop.average_rating or 0,
        "total_products": shop.total_products,
        "total_reviews": shop.total_reviews,
    }


# =============================================================================
# ASSISTANT
# =============================================================================

class ShoppingAssistant:
    """Chat front door to the catalog; never writes."""

    def __init__(self, session: AsyncSession, model: Optional[ChatModel] = None):
        self.session = session
        self.search = CatalogSearch(session)
        self.model = model or RuleBasedChatModel()

    async def respond(self, message: str, history: Optional[List[Dict[str, str]]] = None) -> AssistantReply:
        message = message.strip()[:MAX_MESSAGE_LENGTH]
        history = list(history or [])[-MAX_HISTORY:]

        try:
            intent = parse_model_output(await self.model.complete(message, history))
        except Exception as e:
            logger.error("Chat model failed", error=str(e), error_type=type(e).__name__)
            return APOLOGY

        if intent.type == "chat" or not intent.tool:
            return intent.message

        try:
            result = await execute_tool(self.search, intent.tool)
        except Exception as e:
            logger.error("Assistant tool failed", action=intent.tool.get("action"), error=str(e))
            result = None

        if result is None or not result.items:
            return f"{intent.message}\n\n{NO_RESULTS}".strip()

        logger.info("Assistant answered", intent=intent.type, results=len(result.items))
        if result.kind == "products":
            vendors = await self._vendor_names(result.items)
            items = [format_product(product, vendors.get(product.vendor_id)) for product in result.items]
        else:
            items = [format_shop(shop) for shop in result.items]
        return {"type": result.kind, "message": intent.message, "items": items}

    async def _vendor_names(self, products: List[Product]) -> Dict[uuid.UUID, str]:
        vendor_ids = {product.vendor_id for product in products if product.vendor_id}
        if not vendor_ids:
            return {}
        result = await self.session.execute(select(Shop.id, Shop.name).where(Shop.id.in_(vendor_ids)))
        return {row.id: row.name for row in result}
