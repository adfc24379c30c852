from app.routers import health, quizzes

__all__ = [
    "health",
    "quizzes",
]
