"""
people.py - Display-name resolver for log rows and account filters.

Activity records only carry uid / login. The directory maps those back to a
person (login + full name) so the reviewer sees names, and so an account
filter typed as a login or a name can be resolved to a uid.

Older writers stored the actor under different keys (authorUid, by, author,
...); the candidate lists below cover all of them.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict

from sessionlog.activity.identity import derive_login
from sessionlog.activity.schemas import LogEntry

logger = logging.getLogger(__name__)

UID_KEYS = ("uid", "authorUid", "byUid", "paymentResolvedByUid")
LOGIN_KEYS = ("login", "authorLogin", "by", "author", "createdByLogin")
NAME_KEYS = ("fullName", "authorFullName", "byFullName")


class Person(BaseModel):
    model_config = ConfigDict(frozen=True)

    uid: str
    login: str = ""
    full_name: str = ""

    @property
    def label(self) -> str:
        return self.full_name or self.login or self.uid


def normalize_login(value: object) -> str:
    """Lower-cased login; e-mails on the login domain are reduced to the login."""
    if not isinstance(value, str) or not value.strip():
        return ""
    return derive_login(value.strip()).lower()


def uid_candidates(entry: LogEntry) -> list[str]:
    values = [entry.field(key) for key in UID_KEYS]
    author = entry.payload.get("author")
    if isinstance(author, dict):
        values.append(author.get("uid"))
    return [v for v in values if isinstance(v, str) and v]


def login_candidates(entry: LogEntry) -> list[str]:
    logins = [normalize_login(entry.field(key)) for key in LOGIN_KEYS]
    return [login for login in logins if login]


class PeopleDirectory:
    def __init__(self, people: Iterable[Person] = ()) -> None:
        self._by_uid: dict[str, Person] = {}
        self._by_login: dict[str, Person] = {}
        for person in people:
            self.add(person)

    def __len__(self) -> int:
        return len(self._by_uid)

    def add(self, person: Person) -> None:
        self._by_uid[person.uid] = person
        if person.login:
            self._by_login[person.login.lower()] = person

    def by_uid(self, uid: str) -> Optional[Person]:
        return self._by_uid.get(uid)

    def by_login(self, login: str) -> Optional[Person]:
        return self._by_login.get(normalize_login(login))

    def find(self, selector: str) -> Optional[Person]:
        """Resolve a uid, login or full name (case-insensitive)."""
        if not selector:
            return None
        person = self.by_uid(selector) or self.by_login(selector)
        if person is not None:
            return person
        wanted = selector.strip().lower()
        for candidate in self._by_uid.values():
            if candidate.full_name and candidate.full_name.lower() == wanted:
                return candidate
        return None

    def resolve_display_name(self, uid_or_login: str) -> Optional[str]:
        person = self.by_uid(uid_or_login) or self.by_login(uid_or_login)
        return person.label if person else None

    def actor_name(self, entry: LogEntry) -> str:
        """
        Best human-readable actor for a log row:
        direct name fields, then directory by uid, then by login, then the raw login.
        """
        for key in NAME_KEYS:
            direct = entry.payload.get(key)
            if isinstance(direct, str) and direct:
                return direct
        for uid in uid_candidates(entry):
            person = self.by_uid(uid)
            if person is not None:
                return person.label
        logins = login_candidates(entry)
        for login in logins:
            person = self._by_login.get(login)
            if person is not None:
                return person.label
        if logins:
            return logins[0]
        return "Unknown user"


def load_directory(path: str | Path) -> PeopleDirectory:
    """
    Load a JSON list of {"uid", "login", "fullName"} objects.
    A missing or unreadable file yields an empty directory.
    """
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("People directory not loaded from %s: %s", path, exc)
        return PeopleDirectory()
    people = [
        Person(uid=str(item["uid"]), login=str(item.get("login") or ""), full_name=str(item.get("fullName") or ""))
        for item in raw
        if isinstance(item, dict) and item.get("uid")
    ]
    logger.info("People directory loaded count=%d", len(people))
    return PeopleDirectory(people)
