"""
Maintenance commands, run through the flask CLI:

    flask --app api create-admin stephen stephen@example.com --password ...
    flask --app api set-password stephen --password ...
    flask --app api sweep-tokens
"""
import click
from sqlalchemy.exc import IntegrityError
from flask import current_app

from models import storage
from models.user import User
from utils.security import hash_password


def register_commands(app):
    @app.cli.command("create-admin")
    @click.argument("username")
    @click.argument("email")
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--name", default=None)
    def create_admin(username, email, password, name):
        """Create an admin account, or promote and reset an existing one.

        An existing account loses every session, as with any credential or role change.
        """
        session = storage.get_session()
        user = session.query(User).filter(User.username == username).first()
        existing = user is not None
        if existing:
            click.echo(f"Updating existing user {username} to admin")
        else:
            user = User(username=username, email=email.strip().lower(), name=name or username)
            click.echo(f"Creating admin user {username}")
        user.role = "admin"
        user.is_active = True
        user.password_hash = hash_password(password)
        try:
            user.save()
        except IntegrityError:
            raise click.ClickException(f"Email '{email}' is already registered to another user.")
        if existing:
            revoked = current_app.extensions["token_store"].revoke_all(user.id)
            click.echo(f"{revoked} sessions revoked for {username}")
        click.echo(f"Admin user {username} ready (id {user.id})")

    @app.cli.command("set-password")
    @click.argument("username")
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    def set_password(username, password):
        """Replace a user's password and end all of their sessions."""
        session = storage.get_session()
        user = session.query(User).filter(User.username == username).first()
        if user is None:
            raise click.ClickException(f"User with username '{username}' not found.")
        user.password_hash = hash_password(password)
        user.save()
        revoked = current_app.extensions["token_store"].revoke_all(user.id)
        click.echo(f"Password updated for {username}; {revoked} sessions revoked")

    @app.cli.command("sweep-tokens")
    def sweep_tokens():
        """Flag refresh tokens past their expiry as expired."""
        count = current_app.extensions["token_store"].sweep_expired()
        click.echo(f"Marked {count} refresh tokens as expired")
