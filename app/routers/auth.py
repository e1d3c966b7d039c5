from fastapi import APIRouter, Depends, HTTPException, status
from typing import Optional
from decimal import Decimal
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from sqlmodel import Session
from jose import JWTError
from pydantic import BaseModel
from app.db.session import get_session
from app.models.worker import Worker, WorkerRole
from app.core.security import decode_access_token
from app.services.auth import AuthService

router = APIRouter()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/v1/auth/token")


class Token(BaseModel):
    access_token: str
    token_type: str
    role: WorkerRole

class WorkerCreate(BaseModel):
    name: str
    email: str
    password: str
    employee_id: str
    phone: Optional[str] = None
    role: WorkerRole = WorkerRole.WORKER

class WorkerRead(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    employee_id: str
    role: WorkerRole
    is_active: bool
    total_bills: int
    total_revenue: Decimal

def get_auth_service(session: Session = Depends(get_session)) -> AuthService:
    return AuthService(session)

def get_current_worker(token: str = Depends(oauth2_scheme), session: Session = Depends(get_session)) -> Worker:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_access_token(token)
        subject = payload.get("sub")
        if subject is None:
            raise credentials_exception
        worker_id = int(subject)
    except (JWTError, ValueError):
        raise credentials_exception

    worker = session.get(Worker, worker_id)
    if worker is None or not worker.is_active:
        raise credentials_exception
    return worker

def get_current_owner(current_worker: Worker = Depends(get_current_worker)) -> Worker:
    if not current_worker.is_owner:
        raise HTTPException(status_code=403, detail="Owner access required")
    return current_worker

@router.post("/token", response_model=Token)
def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    service: AuthService = Depends(get_auth_service),
):
    worker, error = service.authenticate_worker(form_data.username, form_data.password)
    if not worker:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error,
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token = service.issue_token(worker)
    return {"access_token": access_token, "token_type": "bearer", "role": worker.role}

@router.get("/me", response_model=WorkerRead)
def read_me(current_worker: Worker = Depends(get_current_worker)):
    return WorkerRead.model_validate(current_worker, from_attributes=True)

@router.post("/workers", response_model=WorkerRead, status_code=201)
def create_worker(
    worker_in: WorkerCreate,
    owner: Worker = Depends(get_current_owner),
    service: AuthService = Depends(get_auth_service),
):
    """Owners register the workers of their pharmacy."""
    worker = service.register_worker(
        name=worker_in.name,
        email=worker_in.email,
        password=worker_in.password,
        employee_id=worker_in.employee_id,
        phone=worker_in.phone,
        role=worker_in.role,
    )
    return WorkerRead.model_validate(worker, from_attributes=True)
