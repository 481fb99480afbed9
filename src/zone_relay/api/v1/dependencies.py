"""Shared API dependencies for authentication and the live-delivery stack."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session, sessionmaker

from zone_relay.core.security import decode_user_id
from zone_relay.db.session import get_db, get_session_factory
from zone_relay.models import User
from zone_relay.services.broadcaster import Broadcaster
from zone_relay.services.delivery import DeliveryRouter
from zone_relay.services.presence import PresenceRegistry, get_presence_registry
from zone_relay.services.realtime import get_connection_manager
from zone_relay.services.rooms import RoomMembershipTracker, get_room_tracker

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]

# Factory for handlers that outlive a request (WebSockets) and must not pin a connection
SessionFactoryDep = Annotated[sessionmaker[Session], Depends(get_session_factory)]


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    db: SessionDep,
) -> User:
    """Get the current authenticated user from the bearer JWT.

    Raises:
        HTTPException: If the token is invalid or the user does not exist
    """
    user_id = decode_user_id(credentials.credentials)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


def get_presence_dep() -> PresenceRegistry:
    """Return the shared presence registry."""
    return get_presence_registry()


def get_rooms_dep() -> RoomMembershipTracker:
    """Return the shared room membership tracker."""
    return get_room_tracker()


def get_broadcaster_dep() -> Broadcaster:
    """Return the live-push capability backed by this process's sockets."""
    return get_connection_manager()


CurrentUserDep = Annotated[User, Depends(get_current_user)]
PresenceDep = Annotated[PresenceRegistry, Depends(get_presence_dep)]
RoomsDep = Annotated[RoomMembershipTracker, Depends(get_rooms_dep)]
BroadcasterDep = Annotated[Broadcaster, Depends(get_broadcaster_dep)]


def get_delivery_router(
    db: SessionDep,
    presence: PresenceDep,
    rooms: RoomsDep,
    broadcaster: BroadcasterDep,
) -> DeliveryRouter:
    """Build a delivery router bound to the request's database session."""
    return DeliveryRouter(db, presence, rooms, broadcaster)


DeliveryRouterDep = Annotated[DeliveryRouter, Depends(get_delivery_router)]
