"""
CLI interface for CloudOnboard.

Provides a command-line interface over the feature lifecycle sagas.

Usage:
    python -m cloudonboard add --profile prod --regions us-east-2 cloud-native-protection
    python -m cloudonboard remove --profile prod --delete-snapshots cloud-native-protection
    python -m cloudonboard show --account-id 123456789012
    python -m cloudonboard update-regions --account-id 123456789012 \\
        --feature cloud-native-protection us-east-2 us-west-2
    python -m cloudonboard update-permissions --profile prod cloud-native-protection
"""

import argparse
import json
import sys

from cloudonboard.aws_account import AwsAccount, from_profile
from cloudonboard.config import Settings, get_settings
from cloudonboard.context import ClientContext
from cloudonboard.errors import CloudOnboardError
from cloudonboard.features import ALL, Feature, parse_feature
from cloudonboard.identity import Identity, NativeAccountId, PlatformAccountId, RoleArn
from cloudonboard.logging_config import get_logger, log_with_context, setup_logging
from cloudonboard.models import CloudAccount
from cloudonboard.orchestrator import FeatureLifecycleOrchestrator

logger = get_logger(__name__)


def _feature_arg(text: str) -> Feature:
    try:
        return parse_feature(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _add_account_args(parser: argparse.ArgumentParser) -> None:
    _ = parser.add_argument(
        "--profile",
        type=str,
        default=None,
        help="AWS profile (default: CLOUDONBOARD_AWS_PROFILE or 'default')",
    )
    _ = parser.add_argument(
        "--region",
        type=str,
        default=None,
        help="AWS region for the CloudFormation stack (default: CLOUDONBOARD_AWS_REGION)",
    )
    _ = parser.add_argument(
        "--role-arn",
        type=str,
        default=None,
        help="IAM role to assume with the profile's credentials",
    )


def _add_identity_args(parser: argparse.ArgumentParser, required: bool) -> None:
    group = parser.add_mutually_exclusive_group(required=required)
    _ = group.add_argument("--account-id", type=str, help="AWS account id")
    _ = group.add_argument("--cloud-account-id", type=str, help="Platform cloud account id")
    _ = group.add_argument("--account-role-arn", type=str, help="IAM role ARN in the account")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="cloudonboard",
        description="CloudOnboard CLI - AWS account feature onboarding",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # add command
    add_parser = subparsers.add_parser("add", help="Add features to an AWS account")
    _add_account_args(add_parser)
    _ = add_parser.add_argument("--name", type=str, default=None, help="Account display name")
    _ = add_parser.add_argument(
        "--regions",
        nargs="+",
        default=[],
        help="Regions to enable the features in",
    )
    _ = add_parser.add_argument(
        "--outpost-account-id",
        type=str,
        default=None,
        help="Separate AWS account for the outpost feature",
    )
    _ = add_parser.add_argument(
        "--outpost-profile",
        type=str,
        default=None,
        help="AWS profile for the outpost account",
    )
    _ = add_parser.add_argument(
        "features",
        nargs="+",
        type=_feature_arg,
        help="Features, e.g. cloud-native-protection or cloud-native-protection:basic",
    )

    # remove command
    remove_parser = subparsers.add_parser("remove", help="Remove features from an AWS account")
    _add_account_args(remove_parser)
    _ = remove_parser.add_argument(
        "--delete-snapshots",
        action="store_true",
        help="Delete snapshots when disabling protection features",
    )
    _ = remove_parser.add_argument("features", nargs="+", type=_feature_arg, help="Features to remove")

    # show command
    show_parser = subparsers.add_parser("show", help="Show onboarded accounts")
    _add_identity_args(show_parser, required=False)
    _ = show_parser.add_argument(
        "--feature",
        type=_feature_arg,
        default=ALL,
        help="Only show this feature (default: all)",
    )
    _ = show_parser.add_argument(
        "--search",
        type=str,
        default="",
        help="Filter on account id, name or role ARN when listing",
    )

    # update-regions command
    regions_parser = subparsers.add_parser("update-regions", help="Replace a feature's regions")
    _add_identity_args(regions_parser, required=True)
    _ = regions_parser.add_argument("--feature", type=_feature_arg, required=True, help="Feature to update")
    _ = regions_parser.add_argument("regions", nargs="*", help="New regions")

    # update-permissions command
    permissions_parser = subparsers.add_parser(
        "update-permissions",
        help="Update the CloudFormation stack to the features' current permissions",
    )
    _add_account_args(permissions_parser)
    _ = permissions_parser.add_argument("features", nargs="+", type=_feature_arg, help="Features to update")

    return parser


def main(argv: list[str] | None = None) -> int:
    """
    CLI main entry point.

    Returns:
        Exit code (0 for success, 1 for error, 130 when interrupted)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    command: str | None = str(args.command) if args.command else None
    if not command:
        parser.print_help()
        return 1

    # Load configuration
    try:
        settings = get_settings()
    except Exception as e:
        print(f"Failed to load configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(settings.log_level)

    try:
        orchestrator = build_orchestrator(settings)
        if command == "add":
            return cmd_add(args, settings, orchestrator)
        if command == "remove":
            return cmd_remove(args, settings, orchestrator)
        if command == "show":
            return cmd_show(args, orchestrator)
        if command == "update-regions":
            return cmd_update_regions(args, orchestrator)
        if command == "update-permissions":
            return cmd_update_permissions(args, settings, orchestrator)
        print(f"Unknown command: {command}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130

    except CloudOnboardError as e:
        log_with_context(
            logger,
            "error",
            "Command failed",
            command=command,
            error=str(e),
            retryable=e.retryable,
            **e.context,
        )
        print(f"Error: {e}", file=sys.stderr)
        return 1


def build_orchestrator(settings: Settings) -> FeatureLifecycleOrchestrator:
    """Create the orchestrator from settings."""
    return FeatureLifecycleOrchestrator(ClientContext.from_settings(settings))


def _load_account(args: argparse.Namespace, settings: Settings) -> AwsAccount:
    profile: str = args.profile or settings.aws_profile or "default"
    return from_profile(profile, region=args.region or settings.aws_region, role_arn=args.role_arn)


def _identity(args: argparse.Namespace) -> Identity | None:
    if args.account_id:
        return NativeAccountId(str(args.account_id))
    if args.cloud_account_id:
        return PlatformAccountId(str(args.cloud_account_id))
    if args.account_role_arn:
        return RoleArn(str(args.account_role_arn))
    return None


def _print_account(account: CloudAccount) -> None:
    print(account.model_dump_json(indent=2))


def cmd_add(args: argparse.Namespace, settings: Settings, orchestrator: FeatureLifecycleOrchestrator) -> int:
    """
    Add features to the account behind the AWS profile.

    Args:
        args: Command arguments
        settings: Application settings
        orchestrator: Saga runner

    Returns:
        Exit code
    """
    account = _load_account(args, settings)
    outpost_account = None
    if args.outpost_profile:
        outpost_account = from_profile(str(args.outpost_profile), region=args.region or settings.aws_region)

    cloud_account_id = orchestrator.add_features(
        account,
        list(args.features),
        regions=list(args.regions),
        name=args.name,
        outpost_account_id=args.outpost_account_id,
        outpost_account=outpost_account,
    )
    if cloud_account_id is None:
        print("Outpost account added")
    else:
        print(f"Successfully added features to cloud account {cloud_account_id}")
    return 0


def cmd_remove(args: argparse.Namespace, settings: Settings, orchestrator: FeatureLifecycleOrchestrator) -> int:
    """
    Remove features from the account behind the AWS profile.

    Returns:
        Exit code
    """
    account = _load_account(args, settings)
    orchestrator.remove_features(account, list(args.features), delete_snapshots=bool(args.delete_snapshots))
    print(f"Successfully removed features from AWS account {account.native_id}")
    return 0


def cmd_show(args: argparse.Namespace, orchestrator: FeatureLifecycleOrchestrator) -> int:
    identity = _identity(args)
    if identity is not None:
        _print_account(orchestrator.account(identity, args.feature))
        return 0

    accounts = orchestrator.accounts(args.feature, str(args.search))
    print(json.dumps([a.model_dump(mode="json") for a in accounts], indent=2))
    return 0


def cmd_update_regions(args: argparse.Namespace, orchestrator: FeatureLifecycleOrchestrator) -> int:
    identity = _identity(args)
    if identity is None:
        print("An account reference is required", file=sys.stderr)
        return 1
    _print_account(orchestrator.update_regions(identity, args.feature, list(args.regions)))
    return 0


def cmd_update_permissions(
    args: argparse.Namespace,
    settings: Settings,
    orchestrator: FeatureLifecycleOrchestrator,
) -> int:
    account = _load_account(args, settings)
    _print_account(orchestrator.update_permissions(account, list(args.features)))
    return 0


if __name__ == "__main__":
    sys.exit(main())
