import json
import logging
from typing import Any, Dict, List, Optional
from redis import Redis
from eshop.core.config import settings

logger = logging.getLogger(__name__)

def get_client() -> Redis:
    return Redis.from_url(settings.REDIS_URL, decode_responses=True)

def cart_key(user: str) -> str:
    return f"cart:{user}"

def line_field(product_id: int, variant: Optional[str] = None) -> str:
    return f"{product_id}:{variant or ''}"

def get_lines(user: str) -> List[Dict[str, Any]]:
    """Cart lines as ``{product_id, quantity, variant}`` dicts, oldest field first."""
    r = get_client()
    raw = r.hgetall(cart_key(user))
    lines = []
    for field, val in sorted(raw.items()):
        try:
            lines.append(json.loads(val))
        except ValueError:
            logger.warning("Dropping unreadable cart line %s for %s", field, user)
            continue
    return lines

def get_line(user: str, product_id: int, variant: Optional[str] = None) -> Optional[Dict[str, Any]]:
    r = get_client()
    val = r.hget(cart_key(user), line_field(product_id, variant))
    return json.loads(val) if val else None

def put_line(user: str, product_id: int, quantity: int, variant: Optional[str] = None):
    r = get_client()
    line = {"product_id": product_id, "quantity": quantity, "variant": variant}
    r.hset(cart_key(user), line_field(product_id, variant), json.dumps(line))

def delete_line(user: str, product_id: int, variant: Optional[str] = None):
    r = get_client()
    r.hdel(cart_key(user), line_field(product_id, variant))

def clear_cart(user: str):
    r = get_client()
    r.delete(cart_key(user))
