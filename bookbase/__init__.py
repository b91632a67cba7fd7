"""BookBase - Library Management Package

This package contains the application modules including:
- API endpoints (api.py) and request/response models (schemas.py)
- Catalog logic (library.py), accounts (accounts.py) and lending (circulation.py)
- Reminder jobs (notifications.py, scheduler.py)
- CLI interface (main.py)
- Data models (book.py, user.py, checkout.py)
- Database layer (database.py)
"""

__version__ = "1.0.0"
