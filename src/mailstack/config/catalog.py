"""
Service Catalog
The mail stack's services, their ports and startup order
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from ..orchestrator.errors import CatalogError
from ..orchestrator.models import PortSpec, ServiceSpec
from .settings import Settings

logger = logging.getLogger(__name__)

# ========================
# Port Map
# ========================
SMTP = PortSpec(port=25, label="SMTP", critical=True)
SMTPS = PortSpec(port=465, label="SMTPS", critical=True)
SUBMISSION = PortSpec(port=587, label="Submission", critical=True)
IMAP = PortSpec(port=143, label="IMAP")
IMAPS = PortSpec(port=993, label="IMAPS", critical=True)
POP3 = PortSpec(port=110, label="POP3")
POP3S = PortSpec(port=995, label="POP3S")
HTTP = PortSpec(port=80, label="HTTP")
HTTPS = PortSpec(port=443, label="HTTPS")
SRS_FORWARD = PortSpec(port=10001, label="SRS-Forward")
SRS_REVERSE = PortSpec(port=10002, label="SRS-Reverse")
OPENDKIM = PortSpec(port=12301, label="OpenDKIM")

_SPECS_ADAPTER = TypeAdapter(List[ServiceSpec])


def postsrsd_command(domain: str, secret: Path) -> List[str]:
    """argv that runs PostSRSD directly on the SRS ports"""
    return [
        "/usr/sbin/postsrsd",
        "-f", str(SRS_FORWARD.port),
        "-r", str(SRS_REVERSE.port),
        "-d", domain,
        "-s", str(secret),
        "-u", "postsrsd",
        "-l", "127.0.0.1",
        "-n",
    ]


def default_catalog(settings: Settings) -> List[ServiceSpec]:
    """
    Built-in mail stack

    Order: postsrsd, opendkim, postfix, dovecot, nginx. OpenDKIM, Postfix and
    Dovecot are essential; PostSRSD and Nginx only add SRS forwarding and
    autodiscovery, so the stack stays usable without them.

    Args:
        settings: Provides the domain and secret for the PostSRSD fallback

    Returns:
        Service declarations in startup order
    """
    return [
        ServiceSpec(
            name="postsrsd",
            order=10,
            ports=[SRS_FORWARD, SRS_REVERSE],
            essential=False,
            fallback_command=postsrsd_command(settings.domain, settings.postsrsd_secret),
            kill_pattern="postsrsd",
        ),
        ServiceSpec(
            name="opendkim",
            order=20,
            ports=[OPENDKIM],
            kill_pattern="opendkim",
            config_test=["opendkim", "-n"],
        ),
        ServiceSpec(
            name="postfix",
            order=30,
            ports=[SMTP, SMTPS, SUBMISSION],
            kill_pattern="postfix",
            # Submission listeners only appear after a reload
            reload_after_start=True,
            config_test=["postfix", "check"],
        ),
        ServiceSpec(
            name="dovecot",
            order=40,
            ports=[IMAP, IMAPS, POP3, POP3S],
            kill_pattern="dovecot",
            config_test=["doveconf", "-n"],
        ),
        ServiceSpec(
            name="nginx",
            order=50,
            ports=[HTTP, HTTPS],
            essential=False,
            config_test=["nginx", "-t"],
        ),
    ]


def load_catalog(path: Path) -> List[ServiceSpec]:
    """
    Load service declarations from a JSON file

    The file holds a list of objects with the ServiceSpec fields, e.g.
    ``[{"name": "postfix", "order": 1, "ports": [{"port": 25, "label": "SMTP"}]}]``

    Raises:
        CatalogError: If the file is missing, not JSON, or fails validation
    """
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise CatalogError(f"Cannot read service catalog {path}: {e}")

    try:
        specs = _SPECS_ADAPTER.validate_json(raw)
    except ValidationError as e:
        raise CatalogError(f"Invalid service catalog {path}: {e}")

    if not specs:
        raise CatalogError(f"Service catalog {path} declares no services")

    names = [s.name for s in specs]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise CatalogError(f"Duplicate services in {path}: {', '.join(duplicates)}")

    logger.debug(f"Loaded {len(specs)} services from {path}")
    return specs


def resolve_catalog(settings: Settings, path: Optional[Path] = None) -> List[ServiceSpec]:
    """Explicit path, then MAILSTACK_SERVICES_FILE, then the built-in stack"""
    path = path or settings.services_file
    if path:
        return load_catalog(path)
    return default_catalog(settings)


def dump_catalog(specs: List[ServiceSpec]) -> str:
    """Serialize declarations in the format load_catalog reads"""
    return json.dumps([s.to_dict() for s in specs], indent=2)
