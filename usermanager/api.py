"""FastAPI application exposing CRUD endpoints for user accounts."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.exception_handlers import http_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, load_settings
from .database import (
    Database,
    EmailConflictError,
    StorageError,
    UserNotFoundError,
)
from .models import User

logger = logging.getLogger("usermanager.api")

USERS_PATH = "/api/users"


class UserResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    email: str
    created_at: datetime
    updated_at: datetime


class CreateUserRequest(BaseModel):
    # Missing fields are left to the NOT NULL constraints of the users table.
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class UpdateUserRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


class UserAPIError(Exception):
    """Terminal failure of a user endpoint, rendered as ``{message, error}``."""

    def __init__(self, status_code: int, message: str, error: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.error = error

    def to_payload(self) -> Dict[str, str]:
        payload = {"message": self.message}
        if self.error is not None:
            payload["error"] = self.error
        return payload


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def _format_validation_errors(errors: List[Dict[str, Any]]) -> str:
    parts: List[str] = []
    for error in errors:
        location = ".".join(str(item) for item in error.get("loc", ()) if item != "body")
        message = str(error.get("msg", "invalid value"))
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


def create_app(
    *,
    database: Database | None = None,
    settings: Settings | None = None,
    initialize_database: bool = False,
    include_ui: bool = True,
) -> FastAPI:
    """Create the REST application, optionally with the browser UI at ``/``."""

    if settings is None:
        settings = load_settings()

    if database is None:
        database = Database(settings.database_path, echo_sql=settings.echo_sql)
        database.initialize()
    elif initialize_database:
        database.initialize()

    app = FastAPI(
        title="User Management Service",
        description="CRUD API for user accounts",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.database = database
    app.state.settings = settings

    def get_db() -> Database:
        return database

    router = APIRouter(prefix=USERS_PATH, tags=["users"])

    @router.get("", response_model=List[UserResponse])
    @router.get("/", response_model=List[UserResponse], include_in_schema=False)
    def list_users(db: Database = Depends(get_db)) -> List[UserResponse]:
        try:
            users = db.list_users()
        except StorageError as exc:
            logger.exception("Failed to list users")
            raise UserAPIError(status.HTTP_500_INTERNAL_SERVER_ERROR, "Error fetching users", str(exc)) from exc
        return [user_to_response(user) for user in users]

    @router.get("/{user_id}", response_model=UserResponse)
    def get_user(user_id: str, db: Database = Depends(get_db)) -> UserResponse:
        try:
            user = db.get_user(user_id)
        except StorageError as exc:
            logger.exception("Failed to load user %s", user_id)
            raise UserAPIError(status.HTTP_500_INTERNAL_SERVER_ERROR, "Error fetching user", str(exc)) from exc
        if user is None:
            raise UserAPIError(status.HTTP_404_NOT_FOUND, "User not found")
        return user_to_response(user)

    @router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
    @router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED, include_in_schema=False)
    def create_user(
        payload: Optional[CreateUserRequest] = None,
        db: Database = Depends(get_db),
    ) -> UserResponse:
        data = payload or CreateUserRequest()
        try:
            user = db.create_user(data.name, data.email, data.password)
        except EmailConflictError as exc:
            logger.info("Rejected new user with duplicate email %s", data.email)
            raise UserAPIError(status.HTTP_400_BAD_REQUEST, "Email already exists") from exc
        except StorageError as exc:
            logger.exception("Failed to create user")
            raise UserAPIError(status.HTTP_500_INTERNAL_SERVER_ERROR, "Error creating user", str(exc)) from exc

        logger.info("Created user %s", user.id)
        return user_to_response(user)

    @router.put("/{user_id}", response_model=UserResponse)
    def update_user(
        user_id: str,
        payload: Optional[UpdateUserRequest] = None,
        db: Database = Depends(get_db),
    ) -> UserResponse:
        changes = payload.model_dump(exclude_unset=True) if payload is not None else {}
        try:
            existing = db.get_user(user_id)
            if existing is None:
                raise UserAPIError(status.HTTP_404_NOT_FOUND, "User not found")
            user = db.save_user(existing, **changes)
        except UserNotFoundError as exc:
            raise UserAPIError(status.HTTP_404_NOT_FOUND, "User not found") from exc
        except EmailConflictError as exc:
            logger.info("Rejected update of user %s with duplicate email", user_id)
            raise UserAPIError(status.HTTP_400_BAD_REQUEST, "Email already exists") from exc
        except StorageError as exc:
            logger.exception("Failed to update user %s", user_id)
            raise UserAPIError(status.HTTP_500_INTERNAL_SERVER_ERROR, "Error updating user", str(exc)) from exc

        logger.info("Updated user %s (%s)", user.id, ", ".join(sorted(changes)) or "no changes")
        return user_to_response(user)

    @router.delete("/{user_id}", response_model=MessageResponse)
    def delete_user(user_id: str, db: Database = Depends(get_db)) -> MessageResponse:
        try:
            deleted = db.delete_user(user_id)
        except StorageError as exc:
            logger.exception("Failed to delete user %s", user_id)
            raise UserAPIError(status.HTTP_500_INTERNAL_SERVER_ERROR, "Error deleting user", str(exc)) from exc
        if not deleted:
            raise UserAPIError(status.HTTP_404_NOT_FOUND, "User not found")

        logger.info("Deleted user %s", user_id)
        return MessageResponse(message="User deleted successfully")

    app.include_router(router)

    if include_ui:
        from .web import register_ui_routes

        register_ui_routes(app, api_base_path=USERS_PATH)

    @app.exception_handler(UserAPIError)
    async def handle_user_api_error(request: Request, exc: UserAPIError):
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            logger.warning("%s %s -> %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        # A known path with an unregistered method is an unknown route.
        if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
            exc = StarletteHTTPException(status_code=status.HTTP_404_NOT_FOUND)
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError):
        errors = list(exc.errors())
        if any(error.get("type") == "json_invalid" for error in errors):
            message = "Invalid JSON payload"
        else:
            message = "Invalid request body"
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"message": message, "error": _format_validation_errors(errors)},
        )

    return app


__all__ = [
    "CreateUserRequest",
    "MessageResponse",
    "UpdateUserRequest",
    "UserAPIError",
    "UserResponse",
    "create_app",
    "user_to_response",
]
