from functools import wraps
from typing import Callable

from app.cache import layer


def async_cached(key_builder: Callable[..., str], l2_ttl: int = None):
    """
    Read-through caching for async functions. key_builder receives the same
    args/kwargs as the wrapped function.
    Example:
      @async_cached(lambda self, user_id: f"todos:user:{user_id}")
      async def list_user_todos(self, user_id): ...
    """

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(*args, **kwargs):
            key = key_builder(*args, **kwargs)

            async def loader():
                value = await fn(*args, **kwargs)
                if hasattr(value, "model_dump"):
                    return value.model_dump(mode="json")
                return value

            return await layer.cache_layer.get(key, loader=loader, l2_ttl=l2_ttl)

        return wrapper

    return decorator
