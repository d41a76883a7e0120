from eduvault.routers import auth, content_approval, health, student_content, uploads

__all__ = [
    "auth",
    "content_approval",
    "health",
    "student_content",
    "uploads",
]
