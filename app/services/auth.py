import logging
from datetime import datetime, timedelta
from typing import Optional
from sqlmodel import Session, select, or_
from fastapi import HTTPException

from app.models.worker import Worker, WorkerRole
from app.core.security import create_access_token, get_password_hash, verify_password

logger = logging.getLogger(__name__)

class AuthService:
    def __init__(self, session: Session):
        self.session = session

    def get_worker_by_login(self, login: str) -> Optional[Worker]:
        """Workers sign in with either their email or their employee ID."""
        login = login.strip()
        return self.session.exec(
            select(Worker).where(
                or_(Worker.email == login.lower(), Worker.employee_id == login.upper())
            )
        ).first()

    def register_worker(
        self,
        name: str,
        email: str,
        password: str,
        employee_id: str,
        phone: Optional[str] = None,
        role: WorkerRole = WorkerRole.WORKER,
    ) -> Worker:
        email = email.strip().lower()
        employee_id = employee_id.strip().upper()

        existing = self.session.exec(
            select(Worker).where(or_(Worker.email == email, Worker.employee_id == employee_id))
        ).first()
        if existing:
            raise HTTPException(status_code=400, detail="Email or employee ID already registered")

        if len(password) < 6:
            raise HTTPException(status_code=400, detail="Password must be at least 6 characters")

        worker = Worker(
            name=name,
            email=email,
            phone=phone,
            employee_id=employee_id,
            password_hash=get_password_hash(password),
            role=role,
        )
        self.session.add(worker)
        self.session.commit()
        self.session.refresh(worker)
        logger.info(f"Registered {role.value} {worker.employee_id}")
        return worker

    def authenticate_worker(self, login: str, password: str) -> tuple[Optional[Worker], Optional[str]]:
        worker = self.get_worker_by_login(login)
        if not worker or not verify_password(password, worker.password_hash):
            return None, "Incorrect email/employee ID or password"
        if not worker.is_active:
            return None, "Account is deactivated"
        return worker, None

    def issue_token(self, worker: Worker, expires_delta: Optional[timedelta] = None) -> str:
        worker.last_login = datetime.utcnow()
        self.session.add(worker)
        self.session.commit()
        self.session.refresh(worker)
        return create_access_token(
            data={"sub": str(worker.id), "role": worker.role.value},
            expires_delta=expires_delta,
        )
