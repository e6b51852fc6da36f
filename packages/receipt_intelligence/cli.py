# ruff: noqa: I001
"""CLI for the ``receipt_intelligence`` package.

This module exposes callable command handlers (``cmd_process``,
``cmd_explain``, ...) and a Typer-based console interface on top of them.
Environment variables (``DATABASE_URL``, ``OPENAI_API_KEY``, ``RECEIPTS_AI_*``)
are loaded from a local ``.env`` using ``python-dotenv`` before any command
runs. Business logic lives in ``receipt_intelligence.api``,
``receipt_intelligence.pipeline`` and ``receipt_intelligence.persistence``.

Every command prints JSON to stdout. Hard failures print ``Error: ...`` to
stderr and exit with status 1.
"""

from __future__ import annotations

import dataclasses
import json
import sys
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

import typer
from dotenv import load_dotenv

from .config import AiSettings
from .errors import ReceiptNotFoundError, ReceiptStoreError, RuleValidationError
from .logging_setup import configure_logging
from .models import Receipt, Rule

# ---- Output helpers ----------------------------------------------------------


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=_json_default))


def _receipt_payload(receipt: Receipt) -> dict[str, Any]:
    payload = receipt.snapshot()
    payload["processing_explanation"] = list(receipt.processing_explanation)
    return payload


def _rule_payload(rule: Rule) -> dict[str, Any]:
    return dataclasses.asdict(rule)


def _parse_json_option(raw: str | None, *, option: str) -> Any:
    if raw is None or not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise RuleValidationError(f"{option} is not valid JSON: {e.msg}") from e
    except (ValueError, RecursionError) as e:
        raise RuleValidationError(f"{option} is not valid JSON: {e}") from e


def _store(database_url: str | None):
    # Local import keeps `--help` fast and free of DB side effects.
    from .persistence import SqlReceiptStore

    return SqlReceiptStore(database_url=database_url)


# ---- Command handlers --------------------------------------------------------


def cmd_process(receipt_id: str, user_id: int, *, database_url: str | None = None) -> int:
    """Run the full pipeline for one receipt and print the saved receipt."""

    from .api import process_receipt

    try:
        result = process_receipt(
            receipt_id, user_id, database_url=database_url, settings=AiSettings.from_env()
        )
    except ReceiptNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (ReceiptStoreError, RuntimeError) as e:
        print(f"Error: processing failed: {e}", file=sys.stderr)
        return 1

    _emit(
        {
            "receipt": _receipt_payload(result.receipt),
            "ai_extraction": {
                "status": result.extraction.status,
                "reason": result.extraction.reason,
            },
        }
    )
    return 0


def cmd_explain(receipt_id: str, user_id: int, *, database_url: str | None = None) -> int:
    """Print the explanation trail stored by the most recent processing run."""

    try:
        receipt = _store(database_url).find(receipt_id, user_id)
    except (ReceiptStoreError, RuntimeError) as e:
        print(f"Error: failed to load receipt: {e}", file=sys.stderr)
        return 1
    if receipt is None:
        print(f"Error: {ReceiptNotFoundError(receipt_id, user_id)}", file=sys.stderr)
        return 1

    _emit(list(receipt.processing_explanation))
    return 0


def cmd_add_receipt(
    user_id: int, fields: dict[str, Any], *, database_url: str | None = None
) -> int:
    """Capture a receipt (image path and/or typed fields) and print it."""

    try:
        receipt = _store(database_url).create_receipt(user_id, **fields)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (ReceiptStoreError, RuntimeError) as e:
        print(f"Error: failed to create receipt: {e}", file=sys.stderr)
        return 1

    _emit(_receipt_payload(receipt))
    return 0


def cmd_rules_list(user_id: int, *, database_url: str | None = None) -> int:
    try:
        rules = _store(database_url).list_rules(user_id)
    except (ReceiptStoreError, RuntimeError) as e:
        print(f"Error: failed to list rules: {e}", file=sys.stderr)
        return 1

    _emit([_rule_payload(r) for r in rules])
    return 0


def cmd_rules_add(
    user_id: int,
    *,
    name: str,
    conditions: str | None,
    actions: str | None,
    priority: int | None = None,
    active: bool = True,
    database_url: str | None = None,
) -> int:
    try:
        rule = _store(database_url).create_rule(
            user_id,
            name=name,
            conditions=_parse_json_option(conditions, option="--conditions"),
            actions=_parse_json_option(actions, option="--actions"),
            priority=priority,
            is_active=active,
        )
    except RuleValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (ReceiptStoreError, RuntimeError) as e:
        print(f"Error: failed to create rule: {e}", file=sys.stderr)
        return 1

    _emit(_rule_payload(rule))
    return 0


def cmd_rules_update(
    user_id: int,
    rule_id: int,
    *,
    name: str | None = None,
    conditions: str | None = None,
    actions: str | None = None,
    priority: int | None = None,
    active: bool | None = None,
    database_url: str | None = None,
) -> int:
    """Change only the rule attributes that were supplied."""

    changes: dict[str, Any] = {}
    try:
        if name is not None:
            changes["name"] = name
        if conditions is not None:
            changes["conditions"] = _parse_json_option(conditions, option="--conditions")
        if actions is not None:
            changes["actions"] = _parse_json_option(actions, option="--actions")
        if priority is not None:
            changes["priority"] = priority
        if active is not None:
            changes["is_active"] = active
        rule = _store(database_url).update_rule(rule_id, user_id, **changes)
    except RuleValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (ReceiptStoreError, RuntimeError) as e:
        print(f"Error: failed to update rule: {e}", file=sys.stderr)
        return 1
    if rule is None:
        print(f"Error: Rule not found: id={rule_id} user_id={user_id}", file=sys.stderr)
        return 1

    _emit(_rule_payload(rule))
    return 0


def cmd_rules_delete(user_id: int, rule_id: int, *, database_url: str | None = None) -> int:
    try:
        removed = _store(database_url).delete_rule(rule_id, user_id)
    except (ReceiptStoreError, RuntimeError) as e:
        print(f"Error: failed to delete rule: {e}", file=sys.stderr)
        return 1

    _emit({"ok": True, "deleted": removed})
    return 0


def cmd_rules_dry_run(receipt_id: str, user_id: int, *, database_url: str | None = None) -> int:
    """Evaluate the user's active rules against a stored receipt without saving."""

    from .api import dry_run_rules

    try:
        result = dry_run_rules(receipt_id, user_id, database_url=database_url)
    except ReceiptNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (ReceiptStoreError, RuntimeError) as e:
        print(f"Error: dry run failed: {e}", file=sys.stderr)
        return 1

    _emit(
        {
            "category": result.category,
            "tags": result.tags,
            "notes": result.notes,
            "explanation": [entry.model_dump(mode="json") for entry in result.explanation],
        }
    )
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Extract receipt fields with OpenAI (Responses API), classify them with "
        "user rules and persist the result. Loads settings from a local .env."
    ),
)


@app.command("process")
def process_cmd(
    receipt_id: str = typer.Option(..., "--receipt-id", help="Receipt id (uuid)."),
    user_id: int = typer.Option(..., "--user-id", help="Owner of the receipt."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Run AI extraction and rules for a receipt and save the result."""

    raise typer.Exit(cmd_process(receipt_id, user_id, database_url=database_url))


@app.command("explain")
def explain_cmd(
    receipt_id: str = typer.Option(..., "--receipt-id", help="Receipt id (uuid)."),
    user_id: int = typer.Option(..., "--user-id", help="Owner of the receipt."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Show why a receipt ended up with its current fields."""

    raise typer.Exit(cmd_explain(receipt_id, user_id, database_url=database_url))


@app.command("add-receipt")
def add_receipt_cmd(
    user_id: int = typer.Option(..., "--user-id", help="Owner of the new receipt."),
    file: Path | None = typer.Option(
        None, "--file", help="Path to the receipt image (JPEG, PNG or WEBP).", dir_okay=False
    ),
    merchant: str | None = typer.Option(None, help="Merchant name."),
    total: str | None = typer.Option(None, help="Receipt total, e.g. 12.50."),
    currency: str | None = typer.Option(None, help="3-letter currency code."),
    purchased_at: str | None = typer.Option(None, help="Purchase date (YYYY-MM-DD)."),
    category: str | None = typer.Option(None, help="Initial category."),
    tags: str | None = typer.Option(None, help="Comma-separated tags."),
    notes: str | None = typer.Option(None, help="Free-form notes."),
    raw_text: str | None = typer.Option(None, help="Text already transcribed from the receipt."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Capture a receipt so it can be processed later."""

    supplied = {
        "file_path": str(file) if file is not None else None,
        "merchant": merchant,
        "total": total,
        "currency": currency,
        "purchased_at": purchased_at,
        "category": category,
        "tags": tags,
        "notes": notes,
        "raw_text": raw_text,
    }
    fields = {k: v for k, v in supplied.items() if v is not None}
    raise typer.Exit(cmd_add_receipt(user_id, fields, database_url=database_url))


@app.command("rules-list")
def rules_list_cmd(
    user_id: int = typer.Option(..., "--user-id", help="Rule owner."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """List a user's rules in evaluation order."""

    raise typer.Exit(cmd_rules_list(user_id, database_url=database_url))


@app.command("rules-add")
def rules_add_cmd(
    user_id: int = typer.Option(..., "--user-id", help="Rule owner."),
    name: str = typer.Option(..., "--name", help="Rule name (required)."),
    conditions: str | None = typer.Option(
        None, help='Conditions JSON, e.g. {"all":[{"field":"merchant","operator":"contains","value":"Starbucks"}]}'
    ),
    actions: str | None = typer.Option(
        None, help='Actions JSON, e.g. {"set":{"category":"Coffee"},"append_tags":["coffee"]}'
    ),
    priority: int | None = typer.Option(None, help="Lower runs first (default 100)."),
    active: bool = typer.Option(True, "--active/--inactive", help="Whether the rule is applied."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Create a classification rule."""

    raise typer.Exit(
        cmd_rules_add(
            user_id,
            name=name,
            conditions=conditions,
            actions=actions,
            priority=priority,
            active=active,
            database_url=database_url,
        )
    )


@app.command("rules-update")
def rules_update_cmd(
    user_id: int = typer.Option(..., "--user-id", help="Rule owner."),
    rule_id: int = typer.Option(..., "--rule-id", help="Rule to change."),
    name: str | None = typer.Option(None, "--name", help="New rule name."),
    conditions: str | None = typer.Option(None, help="Replacement conditions JSON."),
    actions: str | None = typer.Option(None, help="Replacement actions JSON."),
    priority: int | None = typer.Option(None, help="Lower runs first."),
    active: bool | None = typer.Option(
        None, "--active/--inactive", help="Enable or disable the rule."
    ),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Edit an existing rule; omitted options keep their current values."""

    raise typer.Exit(
        cmd_rules_update(
            user_id,
            rule_id,
            name=name,
            conditions=conditions,
            actions=actions,
            priority=priority,
            active=active,
            database_url=database_url,
        )
    )


@app.command("rules-delete")
def rules_delete_cmd(
    user_id: int = typer.Option(..., "--user-id", help="Rule owner."),
    rule_id: int = typer.Option(..., "--rule-id", help="Rule to delete."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Delete a rule."""

    raise typer.Exit(cmd_rules_delete(user_id, rule_id, database_url=database_url))


@app.command("rules-dry-run")
def rules_dry_run_cmd(
    receipt_id: str = typer.Option(..., "--receipt-id", help="Receipt id (uuid)."),
    user_id: int = typer.Option(..., "--user-id", help="Owner of the receipt and rules."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Preview rule output for a stored receipt without saving anything."""

    raise typer.Exit(cmd_rules_dry_run(receipt_id, user_id, database_url=database_url))


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures package logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    # Central logging setup so child loggers inherit configuration
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    # Running as a module: `python -m receipt_intelligence.cli`
    app()
