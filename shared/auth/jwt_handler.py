"""Manejo de JWT tokens (la emisión la hace el servicio de autenticación externo)"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict
from jose import JWTError, jwt
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    '''Crear token de acceso JWT (usado por herramientas internas y tests)'''
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({'exp': expire, 'type': 'access'})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[Dict]:
    '''Decodificar y validar token JWT; None si la firma o la expiración no son válidas'''
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.info(f'Token rechazado: {e}')
        return None


def claims_to_user(payload: Dict) -> Optional[Dict]:
    '''Actor autenticado {user_id, email, role} a partir de los claims'''
    user_id = payload.get('sub') or payload.get('user_id')
    if not user_id:
        return None
    role = payload.get('role') or payload.get('app_metadata', {}).get('role', 'user')
    return {
        'user_id': str(user_id),
        'email': payload.get('email'),
        'role': role,
    }
