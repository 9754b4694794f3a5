"""Cliente Redis para cache de lectura (mapa de inventario ocupado)

El cache es solo una optimización: Redis nunca es fuente de verdad para el
inventario. Si Redis falla, las lecturas devuelven None (se consulta la base)
y las escrituras/invalidaciones se registran en el log y se ignoran.
"""
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError
import os
import json
from typing import Optional, Any
import logging

logger = logging.getLogger(__name__)

KEY_PREFIX = os.getenv("REDIS_KEY_PREFIX", "taquilla")

redis_client: Optional[redis.Redis] = None
redis_pool: Optional[ConnectionPool] = None


def make_key(*parts: Any) -> str:
    """taquilla:<parte>:<parte>..."""
    return ":".join([KEY_PREFIX, *[str(p) for p in parts]])


async def init_redis():
    """Inicializar conexión a Redis con pool de conexiones"""
    global redis_client, redis_pool

    redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    max_connections = int(os.getenv("REDIS_MAX_CONNECTIONS", "20"))

    redis_pool = ConnectionPool.from_url(
        redis_url,
        password=os.getenv("REDIS_PASSWORD"),
        max_connections=max_connections,
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,  # Un Redis lento no debe frenar la venta
        retry_on_timeout=False,
        health_check_interval=30,
    )
    redis_client = redis.Redis(connection_pool=redis_pool)

    try:
        await redis_client.ping()
        logger.info(f"Redis conectado (pool max_connections={max_connections})")
    except (RedisError, OSError) as e:
        logger.error(f"Error conectando a Redis, la API seguirá sin cache: {e}")


async def get_redis() -> redis.Redis:
    """Obtener cliente Redis"""
    if redis_client is None:
        await init_redis()
    return redis_client


async def close_redis():
    """Cerrar conexión a Redis y pool"""
    global redis_client, redis_pool
    if redis_client:
        await redis_client.close()
        redis_client = None
    if redis_pool:
        await redis_pool.disconnect()
        redis_pool = None
    logger.info("Redis desconectado")


async def cache_get(key: str) -> Optional[Any]:
    """Leer un valor JSON del cache; None si no existe o Redis no responde"""
    try:
        redis_conn = await get_redis()
        value = await redis_conn.get(key)
    except (RedisError, OSError) as e:
        logger.warning(f"Cache get falló para {key}: {e}")
        return None
    if not value:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning(f"Valor no JSON en cache para {key}, se descarta")
        return None


async def cache_set(key: str, value: Any, expire: int = 60):
    """Guardar un valor JSON con TTL"""
    try:
        redis_conn = await get_redis()
        await redis_conn.setex(key, expire, json.dumps(value, default=str))
    except (RedisError, OSError) as e:
        logger.warning(f"Cache set falló para {key}: {e}")


async def cache_delete(key: str):
    """Invalidar una clave"""
    try:
        redis_conn = await get_redis()
        await redis_conn.delete(key)
    except (RedisError, OSError) as e:
        logger.warning(f"Cache delete falló para {key}: {e}")


async def ping() -> bool:
    redis_conn = await get_redis()
    return bool(await redis_conn.ping())
