from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from app.core.database import get_db
from app.core.security import token_subject
from app.services.image_compression import ImageTranscoder
from app.services.inference.base import InferenceProvider
from app.services.orchestrator import AnalysisOrchestrator
from app.services.records import AnalysisRepository
from app.services.storage import ObjectStore

security = HTTPBearer(auto_error=False)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user_id = token_subject(credentials.credentials)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token.",
        )
    return user_id


# Shared handles are built once in the lifespan (app/main.py) and live on app.state.
def get_object_store(request: Request) -> ObjectStore:
    return request.app.state.object_store


def get_transcoder(request: Request) -> ImageTranscoder:
    return request.app.state.transcoder


def get_provider(request: Request) -> InferenceProvider:
    return request.app.state.provider


def get_orchestrator(
    db: Session = Depends(get_db),
    object_store: ObjectStore = Depends(get_object_store),
    transcoder: ImageTranscoder = Depends(get_transcoder),
    provider: InferenceProvider = Depends(get_provider),
) -> AnalysisOrchestrator:
    return AnalysisOrchestrator(object_store, transcoder, provider, AnalysisRepository(db))
