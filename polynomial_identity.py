#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Device-held polynomial identities.

Only the device knows the mapping real identity <-> polynomial ID; a relay
only ever sees ring elements. The polynomial ID is drawn uniformly at random
from the ring with a CSPRNG, so two IDs of the same person are unlinkable,
and rotation replaces the ID by an independent draw.

Redlines:
  - The real identity, the password and the contact map never leave this
    object: they are not logged, not printed by repr, and not accepted by
    any routing / patch / solver API.
  - PolynomialIdentity is the one mutable type of the routing core. Its
    state is guarded by a per-instance lock.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import threading
import time
from typing import Dict, List, Optional

from ring_params import RingParams, active_ring_params
from ring_polynomial import Polynomial
from routing_errors import RoutingInputError, RoutingNotFoundError

__all__ = [
    "PolynomialIdentity",
    "generate_random_polynomial",
]

logger = logging.getLogger(__name__)


def generate_random_polynomial(params: Optional[RingParams] = None) -> Polynomial:
    """Every coefficient independent and uniform on [0, p), from the OS CSPRNG."""
    params = params if params is not None else active_ring_params()
    coeffs = [secrets.randbelow(params.modulus) for _ in range(params.degree)]
    return Polynomial(coeffs, params=params)


def _fingerprint(poly: Polynomial) -> str:
    """Short digest for log lines; never the coefficients themselves."""
    return hashlib.sha256(poly.coefficients.tobytes()).hexdigest()[:12]


class PolynomialIdentity:
    """
    A user's unlinkable ring-element pseudonym plus a device-local contact book.

    Use ``PolynomialIdentity.create``; the constructor is not validated.
    """

    def __init__(self, real_identity: str, password: str, initial_polynomial: Polynomial):
        self._real_identity = real_identity
        # Placeholder for a future local-storage key; no cryptographic effect here.
        self._password = password
        self._polynomial_id = initial_polynomial
        self._created_at = time.time()
        self._contacts: Dict[str, Polynomial] = {}
        self._lock = threading.RLock()

    @classmethod
    def create(
        cls,
        real_identity: str,
        password: str,
        *,
        params: Optional[RingParams] = None,
    ) -> "PolynomialIdentity":
        """
        Raises:
            RoutingInputError: empty real identity or password
        """
        if not real_identity:
            raise RoutingInputError("Real identity cannot be empty")
        if not password:
            raise RoutingInputError("Password cannot be empty")
        identity = cls(real_identity, password, generate_random_polynomial(params))
        logger.info("identity created: id=%s", _fingerprint(identity._polynomial_id))
        return identity

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    @property
    def real_identity(self) -> str:
        return self._real_identity

    @property
    def polynomial_id(self) -> Polynomial:
        with self._lock:
            return self._polynomial_id

    @property
    def created_at(self) -> float:
        """Unix time of creation or of the last rotation."""
        with self._lock:
            return self._created_at

    @property
    def params(self) -> RingParams:
        return self._polynomial_id.params

    def rotate_polynomial_id(self) -> None:
        """
        Replace the polynomial ID with a fresh independent draw.

        The old ID is discarded; nothing links it to the new one.
        """
        fresh = generate_random_polynomial(self.params)
        with self._lock:
            old = self._polynomial_id
            self._polynomial_id = fresh
            self._created_at = time.time()
        logger.info("identity rotated: %s -> %s", _fingerprint(old), _fingerprint(fresh))

    # ------------------------------------------------------------------ #
    # Contacts (device-local)
    # ------------------------------------------------------------------ #

    def add_contact(self, contact_name: str, their_polynomial: Polynomial) -> None:
        """Insert or overwrite a contact. Raises RoutingInputError on an empty name."""
        if not contact_name:
            raise RoutingInputError("Contact name cannot be empty")
        if not isinstance(their_polynomial, Polynomial):
            raise RoutingInputError(
                f"contact polynomial must be a Polynomial, got {type(their_polynomial).__name__}"
            )
        with self._lock:
            self._contacts[contact_name] = their_polynomial

    def lookup_contact_polynomial(self, contact_name: str) -> Polynomial:
        with self._lock:
            try:
                return self._contacts[contact_name]
            except KeyError:
                raise RoutingNotFoundError(f"Contact not found: {contact_name}") from None

    def remove_contact(self, contact_name: str) -> None:
        with self._lock:
            if contact_name not in self._contacts:
                raise RoutingNotFoundError(f"Contact not found: {contact_name}")
            del self._contacts[contact_name]

    def has_contact(self, contact_name: str) -> bool:
        with self._lock:
            return contact_name in self._contacts

    def list_contacts(self) -> List[str]:
        """Contact names; the order is unspecified."""
        with self._lock:
            return list(self._contacts)

    def __repr__(self) -> str:
        return f"PolynomialIdentity(id={_fingerprint(self.polynomial_id)}, contacts={len(self._contacts)})"
