"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from ..cache import CachedAttachmentService, CachedMatchingEngine, ResultCache
from ..config import Config, create_default_config, load_config
from ..matching import MatchingEngine
from ..schemas.models import AssignmentStatus, Document, Transaction
from ..services import AttachmentService, AutoAssignService
from ..state_store import StateStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="docmatch",
        description="Match bank transactions to invoices and receipts",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # load command
    load_parser = subparsers.add_parser(
        "load", help="Load transactions and documents from a JSON file"
    )
    load_parser.add_argument(
        "file",
        type=Path,
        help='JSON file with "transactions" and "documents" lists',
    )

    # rank command
    rank_parser = subparsers.add_parser("rank", help="Rank candidate documents for a transaction")
    rank_parser.add_argument(
        "--tx-id",
        type=int,
        required=True,
        help="Transaction ID",
    )
    rank_parser.add_argument(
        "--all-documents",
        action="store_true",
        help="Include documents already attached elsewhere",
    )
    rank_parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Maximum candidates to show (default: 10)",
    )

    # combos command
    combos_parser = subparsers.add_parser(
        "combos", help="Find multi-document combinations for a transaction"
    )
    combos_parser.add_argument(
        "--tx-id",
        type=int,
        required=True,
        help="Transaction ID",
    )
    combos_parser.add_argument(
        "--all-documents",
        action="store_true",
        help="Include documents already attached elsewhere",
    )

    # attach command
    attach_parser = subparsers.add_parser("attach", help="Attach a document to a transaction")
    attach_parser.add_argument("--tx-id", type=int, required=True, help="Transaction ID")
    attach_parser.add_argument("--doc-id", type=int, required=True, help="Document ID")

    # detach command
    detach_parser = subparsers.add_parser("detach", help="Detach a document from a transaction")
    detach_parser.add_argument("--tx-id", type=int, required=True, help="Transaction ID")
    detach_parser.add_argument("--doc-id", type=int, required=True, help="Document ID")

    # auto-assign command
    auto_parser = subparsers.add_parser(
        "auto-assign",
        help="Automatically attach the best documents (default: all unattached transactions)",
    )
    auto_parser.add_argument(
        "--tx-id",
        type=int,
        action="append",
        dest="tx_ids",
        help="Transaction ID (repeatable)",
    )

    # status command
    subparsers.add_parser("status", help="Show matching status and statistics")

    # init-config command
    subparsers.add_parser("init-config", help="Write a default config file")

    return parser


def _build_engine(config: Config, store: StateStore) -> CachedMatchingEngine:
    cache = ResultCache.from_config(config.cache)
    engine = MatchingEngine(store, config.matching, max_workers=config.max_workers)
    attachments = CachedAttachmentService(AttachmentService(store, config.matching), cache)
    return CachedMatchingEngine(engine, cache, AutoAssignService(store, config, attachments))


def cmd_load(config: Config, file: Path) -> int:
    """Seed the state store from a JSON file."""
    print(f"📥 Loading {file}...")

    try:
        with open(file) as f:
            data = json.load(f)
        transactions = [Transaction.from_dict(t) for t in data.get("transactions", [])]
        documents = [Document.from_dict(d) for d in data.get("documents", [])]
    except (OSError, ValueError, KeyError) as e:
        print(f"❌ Failed to read {file}: {e}")
        return 1

    store = StateStore(config.state_db_path)
    for transaction in transactions:
        store.upsert_transaction(transaction)
    for document in documents:
        store.upsert_document(document)

    print(f"✅ Loaded {len(transactions)} transactions and {len(documents)} documents")
    return 0


def cmd_rank(config: Config, tx_id: int, all_documents: bool, limit: int) -> int:
    """Show ranked candidate documents."""
    store = StateStore(config.state_db_path)
    if store.get_transaction(tx_id) is None:
        print(f"❌ Transaction {tx_id} not found")
        return 1

    engine = _build_engine(config, store)
    matches = engine.rank(tx_id, unconnected_only=not all_documents)

    if not matches:
        print(f"No documents above {config.matching.minimum_match_score:.2f} for transaction {tx_id}")
        return 0

    print(f"\n🔍 Candidates for transaction {tx_id}")
    print("=" * 40)
    for match in matches[:limit]:
        b = match.breakdown
        print(
            f"  [{match.document_id}] {match.document.name or '-':<24} "
            f"score {match.match_score:.2f} "
            f"(amount {b.amount_score:.2f}, date {b.date_score:.2f}, "
            f"vendor {b.vendor_score:.2f}, ref {b.reference_score:.2f})"
        )
    print()
    return 0


def cmd_combos(config: Config, tx_id: int, all_documents: bool) -> int:
    """Show multi-document combinations."""
    store = StateStore(config.state_db_path)
    if store.get_transaction(tx_id) is None:
        print(f"❌ Transaction {tx_id} not found")
        return 1

    engine = _build_engine(config, store)
    combinations = engine.find_combinations(tx_id, unconnected_only=not all_documents)

    if not combinations:
        print(f"No document combinations found for transaction {tx_id}")
        return 0

    print(f"\n🧩 Combinations for transaction {tx_id}")
    print("=" * 40)
    for combo in combinations:
        ids = ", ".join(str(i) for i in combo.document_ids)
        print(
            f"  [{ids}] total {combo.total_amount:.2f} "
            f"score {combo.match_score:.2f} {combo.strategy.value}/{combo.confidence_level.value}"
        )
        for warning in combo.warnings:
            print(f"      ⚠️  {warning}")
    print()
    return 0


def cmd_attach(config: Config, tx_id: int, doc_id: int) -> int:
    """Attach a document manually."""
    store = StateStore(config.state_db_path)
    service = AttachmentService(store, config.matching)
    result = service.attach(tx_id, doc_id, is_automatic=False, attached_by="cli")

    if not result.success:
        print(f"❌ {result.message}")
        return 1

    print(f"✅ Attached document {doc_id} to transaction {tx_id}")
    for warning in result.warnings:
        print(f"   ⚠️  {warning}")
    return 0


def cmd_detach(config: Config, tx_id: int, doc_id: int) -> int:
    """Detach a document."""
    store = StateStore(config.state_db_path)
    service = AttachmentService(store, config.matching)
    result = service.detach(tx_id, doc_id)

    if not result.success:
        print(f"❌ {result.message}")
        return 1

    print(f"✅ Detached document {doc_id} from transaction {tx_id}")
    return 0


def cmd_auto_assign(config: Config, tx_ids: list[int] | None) -> int:
    """Run auto-assignment."""
    store = StateStore(config.state_db_path)
    engine = _build_engine(config, store)

    print(f"🤖 Auto-assigning (threshold {config.auto_assign.threshold:.2f})...")
    result = engine.auto_assign_batch(tx_ids)

    for outcome in result.outcomes:
        if outcome.status == AssignmentStatus.ASSIGNED:
            ids = ", ".join(str(i) for i in outcome.document_ids)
            print(
                f"  ✅ Transaction {outcome.transaction_id}: [{ids}] "
                f"({outcome.strategy}, score {outcome.score:.2f})"
            )
        elif outcome.status == AssignmentStatus.SKIPPED:
            print(f"  ⏭️  Transaction {outcome.transaction_id}: {outcome.message}")
        else:
            print(f"  ❌ Transaction {outcome.transaction_id}: {outcome.message}")
        for warning in outcome.warnings:
            print(f"      ⚠️  {warning}")

    print("\n📊 Auto-assign Summary")
    print("=" * 40)
    print(f"  Processed:              {result.total_processed}")
    print(f"  Assigned:               {result.assigned_count}")
    print(f"  Documents attached:     {result.documents_attached}")
    print(f"  Skipped:                {result.skipped_count}")
    print(f"  Failed:                 {result.failed_count}")
    print()

    return 0 if result.success else 1


def cmd_status(config: Config) -> int:
    """Show matching status."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats()

    print("\n📊 Matching Status")
    print("=" * 40)
    print(f"  Transactions total:     {stats['transactions_total']}")
    print(f"  Without documents:      {stats['transactions_unattached']}")
    print(f"  Documents total:        {stats['documents_total']}")
    print(f"  Unconnected documents:  {stats['documents_unconnected']}")
    print(f"  Attachments total:      {stats['attachments_total']}")
    print(f"  Automatic attachments:  {stats['attachments_automatic']}")
    print()

    return 0


def cmd_init_config(path: Path) -> int:
    """Write a default config file."""
    if path.exists():
        print(f"❌ Config file {path} already exists")
        return 1

    create_default_config(path)
    print(f"✅ Wrote default config to {path}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "load":
        return cmd_load(config, parsed.file)
    elif parsed.command == "rank":
        return cmd_rank(config, parsed.tx_id, parsed.all_documents, parsed.limit)
    elif parsed.command == "combos":
        return cmd_combos(config, parsed.tx_id, parsed.all_documents)
    elif parsed.command == "attach":
        return cmd_attach(config, parsed.tx_id, parsed.doc_id)
    elif parsed.command == "detach":
        return cmd_detach(config, parsed.tx_id, parsed.doc_id)
    elif parsed.command == "auto-assign":
        return cmd_auto_assign(config, parsed.tx_ids)
    elif parsed.command == "status":
        return cmd_status(config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
