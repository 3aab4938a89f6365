"""Middleware for authentication context."""
from flask import session, g, current_app
from salesdesk.database import get_session
from salesdesk.models import AppUser


def load_user():
    """
    Load the current user into g (Flask's per-request global).

    Called before each request. Sets g.user, g.user_id and g.user_role when
    the session carries the id of an active user.
    """
    g.user = None
    g.user_id = None
    g.user_role = None

    user_id = session.get('user_id')
    if not user_id:
        return

    try:
        db_session = get_session()
        user = db_session.query(AppUser).filter_by(id=user_id, active=True).first()
    except Exception as e:
        # Keep serving anonymous requests if the user lookup fails
        current_app.logger.error(f"Error in load_user: {e}")
        return

    if user:
        g.user = user
        g.user_id = user.id
        g.user_role = user.role
    else:
        session.pop('user_id', None)
