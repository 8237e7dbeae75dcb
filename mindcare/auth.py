"""
This module provides authentication for the MindCare portal.

It defines:
- `AuthService`, which owns the account records (stored in the `accounts` collection),
  password hashing and verification, and federated (OIDC) account linking.
- `Session`, the per-browser identity object that pages receive explicitly. It holds
  the signed-in `User` and notifies subscribers whenever the user signs in or out.
"""
# mindcare/auth.py

from __future__ import annotations

import hashlib
import logging
import os
import re
from typing import Callable, Dict, List, Optional

from mindcare.models import ROLES, User
from mindcare.store import SERVER_TIMESTAMP, DocumentStore

logger = logging.getLogger(__name__)

ACCOUNTS = 'accounts'
MIN_PASSWORD_LENGTH = 8
_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class AuthError(Exception):
    """Base class for authentication failures."""


class InvalidCredentialsError(AuthError):
    """Raised when an email/password pair does not match an account."""


class AccountExistsError(AuthError):
    """Raised when signing up with an email that already has an account."""


def _hash_password(salt: str, password: str) -> str:
    return hashlib.sha256((salt + password).encode()).hexdigest()


def validate_credentials(email: str, password: str, confirm: Optional[str] = None, signup: bool = False) -> Dict[str, str]:
    """Checks a sign-in or sign-up form.

    Args:
        email (str): The entered email.
        password (str): The entered password.
        confirm (str, optional): The password confirmation (sign-up only).
        signup (bool): Whether the confirmation must be checked.

    Returns:
        dict: Field name to error message; empty when the form is valid.
    """
    errors = {}
    email = (email or '').strip()
    if not email:
        errors['email'] = 'Email is required'
    elif not _EMAIL_PATTERN.match(email):
        errors['email'] = 'Enter a valid email address'
    if not password:
        errors['password'] = 'Password is required'
    elif len(password) < MIN_PASSWORD_LENGTH:
        errors['password'] = f'Password must be at least {MIN_PASSWORD_LENGTH} characters'
    if signup:
        if not confirm:
            errors['confirmPassword'] = 'Confirm your password'
        elif password and confirm != password:
            errors['confirmPassword'] = 'Passwords do not match'
    return errors


class AuthService:
    """Manages accounts and verifies credentials."""

    def __init__(self, store: DocumentStore):
        self._store = store

    def _accounts(self):
        return self._store.collection(ACCOUNTS)

    def _user_from(self, snap) -> User:
        return User(
            uid=snap.id,
            email=snap.get('email', ''),
            role=snap.get('role', 'patient'),
            display_name=snap.get('displayName') or None,
            provider=snap.get('provider', 'password'),
        )

    def _find_by_email(self, email: str):
        matches = self._accounts().where('email', '==', email.strip().lower()).get()
        return matches[0] if matches else None

    def sign_up(self, email: str, password: str, display_name: Optional[str] = None, role: str = 'patient') -> User:
        """Creates a password account.

        Raises:
            ValueError: If the form is invalid or the role is unknown.
            AccountExistsError: If the email already has an account.
        """
        errors = validate_credentials(email, password)
        if errors:
            raise ValueError(next(iter(errors.values())))
        if role not in ROLES:
            raise ValueError(f"Unknown role {role!r}.")
        email = email.strip().lower()
        if self._find_by_email(email) is not None:
            raise AccountExistsError(f"An account for {email} already exists.")

        # Hash the password with a unique salt.
        salt = os.urandom(16).hex()
        ref = self._accounts().add({
            'email': email,
            'displayName': (display_name or '').strip(),
            'role': role,
            'provider': 'password',
            'salt': salt,
            'passwordHash': _hash_password(salt, password),
            'createdAt': SERVER_TIMESTAMP,
        })
        logger.info("Created %s account %s", role, ref.id)
        return self._user_from(ref.get())

    def verify_password(self, email: str, password: str) -> User:
        """Returns the account's user if the password matches.

        Raises:
            InvalidCredentialsError: If the email is unknown or the password is wrong.
        """
        snap = self._find_by_email(email or '')
        if snap is None or snap.get('provider', 'password') != 'password':
            raise InvalidCredentialsError("Invalid email or password.")
        salt = snap.get('salt')
        if not salt or snap.get('passwordHash') != _hash_password(salt, password or ''):
            raise InvalidCredentialsError("Invalid email or password.")
        return self._user_from(snap)

    def federated_user(self, provider: str, subject: str, email: str, name: Optional[str] = None, role: str = 'patient') -> User:
        """Returns the account linked to a federated identity, creating it on first sign-in.

        The identity itself is verified by the provider (Streamlit's OIDC login);
        this only links it to a portal account and role.
        """
        if not subject:
            raise InvalidCredentialsError("The identity provider did not return a subject.")
        matches = self._accounts().where('provider', '==', provider).where('subject', '==', subject).get()
        if matches:
            return self._user_from(matches[0])
        if role not in ROLES:
            raise ValueError(f"Unknown role {role!r}.")
        ref = self._accounts().add({
            'email': (email or '').strip().lower(),
            'displayName': (name or '').strip(),
            'role': role,
            'provider': provider,
            'subject': subject,
            'createdAt': SERVER_TIMESTAMP,
        })
        logger.info("Linked %s identity to new %s account %s", provider, role, ref.id)
        return self._user_from(ref.get())


class Session:
    """The identity of one browser session.

    Pages receive the session explicitly instead of reading a global user.
    Subscribers are called with the new `User` (or None) on every sign-in and
    sign-out, and once immediately with the current state.
    """

    def __init__(self, auth: AuthService):
        self._auth = auth
        self.user: Optional[User] = None
        self._listeners: List[Callable[[Optional[User]], None]] = []

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def subscribe(self, listener: Callable[[Optional[User]], None]) -> Callable[[], None]:
        """Registers a listener for sign-in/out transitions.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)
        listener(self.user)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_user(self, user: Optional[User]) -> None:
        self.user = user
        for listener in list(self._listeners):
            listener(user)

    def sign_in(self, email: str, password: str) -> User:
        user = self._auth.verify_password(email, password)
        self._set_user(user)
        return user

    def sign_up(self, email: str, password: str, display_name: Optional[str] = None, role: str = 'patient') -> User:
        user = self._auth.sign_up(email, password, display_name, role)
        self._set_user(user)
        return user

    def sign_in_federated(self, provider: str, subject: str, email: str, name: Optional[str] = None, role: str = 'patient') -> User:
        user = self._auth.federated_user(provider, subject, email, name, role)
        self._set_user(user)
        return user

    def sign_out(self) -> None:
        self._set_user(None)
