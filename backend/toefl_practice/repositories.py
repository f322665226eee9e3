"""Repository classes encapsulating database operations.

Each repository is small and focused on a single table (users, tasks,
user results). Repositories return SQLModel objects and perform
commits/refreshes where appropriate.
"""

from typing import List, Optional
from sqlmodel import Session, select
from . import models


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_username(self, username: str) -> Optional[models.User]:
        """Return a `User` by username or `None` if not found."""
        stmt = select(models.User).where(models.User.username == username)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        return self.session.get(models.User, user_id)


class TaskRepository:
    """Insert and read generated `Task` rows."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, task: models.Task) -> models.Task:
        """Insert a task and return it with its generated id."""
        self.session.add(task)
        self.session.commit()
        self.session.refresh(task)
        return task

    def get(self, task_id: str) -> Optional[models.Task]:
        return self.session.get(models.Task, task_id)

    def list_for_user(self, user_id: int, task_type: Optional[str] = None) -> List[models.Task]:
        """Return tasks created by `user_id`, newest first."""
        stmt = select(models.Task).where(models.Task.user_id == user_id)
        if task_type:
            stmt = stmt.where(models.Task.task_type == task_type)
        stmt = stmt.order_by(models.Task.created_at.desc())
        return self.session.exec(stmt).all()


class ResultRepository:
    """Persist and query `UserResult` rows."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, result: models.UserResult) -> models.UserResult:
        self.session.add(result)
        self.session.commit()
        self.session.refresh(result)
        return result

    def list_for_user(self, user_id: int) -> List[models.UserResult]:
        """Return every stored result for `user_id`, newest first."""
        stmt = (
            select(models.UserResult)
            .where(models.UserResult.user_id == user_id)
            .order_by(models.UserResult.created_at.desc())
        )
        return self.session.exec(stmt).all()
