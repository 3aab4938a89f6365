"""
Flask CLI commands.

Commands:
- flask init-db: Create database tables
- flask create-user: Create a back office user with a role
"""

import click
import re
from salesdesk.database import create_all, get_session
from salesdesk.models import AppUser, UserRole


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create all database tables."""
        create_all()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('create-user')
    @click.option('--email', prompt=True, help='User email address')
    @click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='User password')
    @click.option('--role', type=click.Choice([r.value for r in UserRole], case_sensitive=False),
                  default=UserRole.CASHIER.value, show_default=True, help='User role')
    @click.option('--full-name', default=None, help='Display name')
    def create_user(email, password, role, full_name):
        """Create a new user allowed to act on sales."""

        # Validate email format
        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not re.match(email_pattern, email):
            click.echo(click.style('Invalid email. Use format: user@example.com', fg='red'))
            raise SystemExit(1)

        # Validate password length
        if len(password) < 6:
            click.echo(click.style('Password must be at least 6 characters.', fg='red'))
            raise SystemExit(1)

        db_session = get_session()

        if db_session.query(AppUser).filter_by(email=email).first():
            click.echo(click.style(f'A user with email {email} already exists.', fg='red'))
            raise SystemExit(1)

        try:
            user = AppUser(email=email, full_name=full_name, role=role.upper())
            user.set_password(password)

            db_session.add(user)
            db_session.commit()

            click.echo(click.style('User created.', fg='green', bold=True))
            click.echo(f'   Email: {email}')
            click.echo(f'   Role: {user.role}')
            click.echo(f'   ID: {user.id}')

        except Exception as e:
            db_session.rollback()
            click.echo(click.style(f'Error creating user: {e}', fg='red'))
            raise SystemExit(1)
