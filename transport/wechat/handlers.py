"""
WeChat Message Handlers

Turns a normalized inbound message into the text of the passive reply.

- text: ``bind`` command, otherwise help
- link: binding lookup, then the idempotent link job
- anything else: "unsupported"

Handlers never build XML and never touch the envelope; the webhook
wraps (and, in safe mode, encrypts) whatever text comes back.
"""

import logging
from typing import Optional, Union

from jobs.orchestrator import LinkJob, LinkOrchestrator
from observability.logs import RequestLogAdapter, mask_openid
from security.token_vault import TokenVault
from services.base import Publisher
from storage.bindings import Binding, BindingStore
from storage.ledger import derive_job_key

from .commands import (
    BindUsageError,
    is_valid_repo_full_name,
    normalize_path_prefix,
    parse_bind_command,
)
from .schemas import InboundMessage

logger = logging.getLogger(__name__)

Log = Union[logging.Logger, RequestLogAdapter]

# ============================================================================
# REPLY TEXTS
# ============================================================================

BIND_USAGE = "bind <github_token> <owner>/<repo> [path <prefix>]"

MISSING_FIELDS_TEXT = "Unsupported message format (missing fields)."
HELP_TEXT = f"Available commands:\n1) {BIND_USAGE}\nExample: bind ghp_xxx myname/myrepo path articles/"
USAGE_TEXT = f"Usage: {BIND_USAGE}"
INVALID_REPO_TEXT = (
    "Invalid repository name, expected <owner>/<repo>, for example octocat/hello-world.\n"
    f"Usage: {BIND_USAGE}"
)
BIND_VERIFY_FAILED_TEXT = (
    "Bind failed: the repository is not accessible. Check the token scope (at least repo) "
    "and the repository name."
)
VAULT_MISSING_TEXT = (
    "The server has no TOKEN_ENCRYPTION_KEY_BASE64 configured, binding is unavailable. "
    "Please ask the administrator to configure it and retry."
)
NO_URL_TEXT = "No link URL found."
BIND_REQUIRED_TEXT = f"You have not bound GitHub yet. Please send:\n{BIND_USAGE}"
UNSUPPORTED_TEXT = "This message type is not supported yet."


def bind_ok_text(repo: str, path: str) -> str:
    return f"Bound:\nrepo={repo}\npath={path}"


class MessageHandler:
    def __init__(
        self,
        bindings: BindingStore,
        orchestrator: LinkOrchestrator,
        publisher: Publisher,
        vault: Optional[TokenVault],
        verify_on_bind: bool = True,
    ):
        self.bindings = bindings
        self.orchestrator = orchestrator
        self.publisher = publisher
        self.vault = vault
        self.verify_on_bind = verify_on_bind

    async def handle(self, message: InboundMessage, log: Optional[Log] = None) -> str:
        log = log or logger
        log.info(
            "wechat_received",
            extra={"msg_type": message.msg_type, "openid": mask_openid(message.from_user)},
        )

        if not message.has_required_fields:
            return MISSING_FIELDS_TEXT
        if message.msg_type == "text":
            return await self.handle_text(message, log)
        if message.msg_type == "link":
            return await self.handle_link(message, log)
        return UNSUPPORTED_TEXT

    # ------------------------------------------------------------------
    # Text commands
    # ------------------------------------------------------------------

    async def handle_text(self, message: InboundMessage, log: Log) -> str:
        openid = mask_openid(message.from_user)
        try:
            command = parse_bind_command(message.content)
        except BindUsageError:
            log.info("wechat_bind_usage", extra={"openid": openid})
            return USAGE_TEXT

        if command is None:
            log.info("wechat_text_help", extra={"openid": openid})
            return HELP_TEXT

        if not is_valid_repo_full_name(command.repo):
            log.info("wechat_bind_invalid_repo", extra={"openid": openid})
            return INVALID_REPO_TEXT

        default_path = normalize_path_prefix(command.path_prefix)

        if self.verify_on_bind:
            try:
                log.info("github_repo_verify_start", extra={"repo": command.repo, "openid": openid})
                await self.publisher.verify_access(command.github_token, command.repo)
            except Exception as e:
                log.warning(
                    f"github_repo_verify_failed: {e}",
                    extra={"repo": command.repo, "openid": openid},
                )
                return BIND_VERIFY_FAILED_TEXT

        if self.vault is None:
            log.warning("server_missing_encryption_key", extra={"openid": openid})
            return VAULT_MISSING_TEXT

        await self.bindings.save(
            message.from_user,
            Binding(
                github_token_enc=self.vault.encrypt(command.github_token),
                default_repo=command.repo,
                default_path=default_path,
            ),
        )
        log.info("binding_saved", extra={"repo": command.repo, "path": default_path, "openid": openid})
        return bind_ok_text(command.repo, default_path)

    # ------------------------------------------------------------------
    # Link save
    # ------------------------------------------------------------------

    async def handle_link(self, message: InboundMessage, log: Log) -> str:
        if not message.url:
            return NO_URL_TEXT

        binding = await self.bindings.get(message.from_user)
        if binding is None:
            log.info("bind_required", extra={"openid": mask_openid(message.from_user)})
            return BIND_REQUIRED_TEXT

        job = LinkJob(
            job_key=derive_job_key(message.from_user, message.url, message.msg_id or None),
            sender=message.from_user,
            url=message.url,
            title=message.title,
            binding=binding,
        )
        return await self.orchestrator.submit(job, log)
