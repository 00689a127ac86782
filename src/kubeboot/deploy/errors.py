# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/deploy/errors.py


class KubebootError(RuntimeError):
    """Base class for orchestrator failures."""


# ---------------------------------------------------------------------
# Step-local errors (retried per the step's retry policy)
# ---------------------------------------------------------------------
class StepError(KubebootError):
    """A step attempt failed; retryable until the policy is exhausted."""


class TransientError(StepError):
    """Network blip, ssh hiccup, apt lock held... worth another attempt."""


class VerificationFailed(StepError):
    """The action returned but the postcondition does not hold."""

    def __init__(self, step_id: str, machine: str):
        super().__init__(f"postcondition of '{step_id}' does not hold on {machine}")
        self.step_id = step_id
        self.machine = machine


class CommandError(StepError):
    """A remote command exited non-zero."""

    def __init__(self, cmd: str, rc: int, stderr: str = ""):
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
        super().__init__(f"command failed (rc={rc}): {cmd}" + (f": {detail}" if detail else ""))
        self.cmd = cmd
        self.rc = rc
        self.stderr = stderr


class InstallError(StepError):
    pass


class ServiceError(StepError):
    pass


class InitError(StepError):
    pass


class JoinError(StepError):
    pass


class ApplyError(StepError):
    pass


class TransferError(StepError):
    pass


# ---------------------------------------------------------------------
# Run-level errors (never retried)
# ---------------------------------------------------------------------
class ConfigurationError(KubebootError, ValueError):
    """Bad inventory or stage graph; raised before any step executes."""


class UnknownDependencyError(ConfigurationError):
    pass


class CyclicDependencyError(ConfigurationError):
    pass


class DuplicateStepError(ConfigurationError):
    pass


class TokenConflict(KubebootError):
    """A second, different join token was offered for the same bootstrap."""


class ControlPlaneDegraded(KubebootError):
    """The control-plane API never answered the liveness probe."""


class RunCancelled(KubebootError):
    pass


FATAL_ERRORS = (TokenConflict, ConfigurationError, RunCancelled)
