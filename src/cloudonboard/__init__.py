"""
CloudOnboard: AWS account feature onboarding for a backup/security platform.

CloudOnboard attaches AWS accounts to the platform and enables or disables
platform features on them. Every change is a saga across three systems that
are each consistent on their own: the platform's GraphQL control plane, the
CloudFormation stack granting the platform its IAM permissions, and the
platform's asynchronous task chains.

Key Components:
    - FeatureLifecycleOrchestrator: Add, remove and update sagas
    - StackReconciler: CloudFormation create/update/delete with polling
    - AsyncJobWaiter: Waits for platform task chains
    - ControlPlane: Typed GraphQL operations
    - features: Static feature catalog and ordering rules

Architecture:
    CLI / caller → Orchestrator → ControlPlane → GraphQL API
                        ↓              ↑
               StackReconciler   AsyncJobWaiter
                        ↓
                 AWS CloudFormation

Usage:
    # Add Cloud Native Protection to the account behind a profile
    python -m cloudonboard add --profile prod --regions us-east-2 cloud-native-protection

    # Show the onboarded features
    python -m cloudonboard show --account-id 123456789012

Version: 0.1.0
License: MIT
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
