"""
Two-pass bootstrap of the cross-account pipelines.

The pipeline templates reference the cross-account roles, and the roles need
the pipelines' artifact key ARNs. The cycle is broken in passes:

    PENDING            nothing done yet
    ROLES_DEPLOYED     role stacks exist in Beta and Prod, keeping published key ARNs
    PIPELINES_DEPLOYED pipeline stacks deployed, key ARNs read from their outputs
    ROLES_PATCHED      role stacks redeployed with the key ARNs
    COMPLETE           source pushed (if requested)

Each pass is idempotent, so a failed run can simply be started again. On a
re-run the first pass keeps the key ARNs of pipelines that already exist, so
the target accounts never lose access to artifacts still in use.
"""

import logging
import subprocess
from concurrent.futures import ThreadPoolExecutor, wait
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from deploy_tools.errors import BootstrapError, StackOutputError
from deploy_tools.settings import (
    CFN_ROLES_DIR,
    PIPELINES,
    PROJECT_ROOT,
    ROLE_STACKS,
    Accounts,
    PipelineTarget,
)
from deploy_tools.stacks import deploy_stack, get_stack_outputs

logger = logging.getLogger(__name__)


class BootstrapPhase(Enum):
    PENDING = "pending"
    ROLES_DEPLOYED = "roles_deployed"
    PIPELINES_DEPLOYED = "pipelines_deployed"
    ROLES_PATCHED = "roles_patched"
    COMPLETE = "complete"


NEXT_PHASE = {
    BootstrapPhase.PENDING: BootstrapPhase.ROLES_DEPLOYED,
    BootstrapPhase.ROLES_DEPLOYED: BootstrapPhase.PIPELINES_DEPLOYED,
    BootstrapPhase.PIPELINES_DEPLOYED: BootstrapPhase.ROLES_PATCHED,
    BootstrapPhase.ROLES_PATCHED: BootstrapPhase.COMPLETE,
}


def cdk_deploy_command(
    stack_name: str, accounts: Accounts, profile: Optional[str], output_dir: str
) -> List[str]:
    command = [
        "cdk", "deploy", stack_name,
        "--app", "python app.py",
        "--context", f"pipeline-account={accounts.pipeline}",
        "--context", f"beta-account={accounts.beta}",
        "--context", f"prod-account={accounts.prod}",
        "--require-approval", "never",
        "--output", output_dir,
    ]
    if profile:
        command += ["--profile", profile]
    return command


def pipeline_deploy_command(target: PipelineTarget, accounts: Accounts, profile: Optional[str]) -> List[str]:
    return cdk_deploy_command(target.stack_name, accounts, profile, f"cdk.out/{target.name}-pipeline")


def commit_and_push(run: Callable, project_root: Path, message: str = "Automated Commit") -> None:
    try:
        run(["git", "add", "."], cwd=str(project_root), check=True)
        # Nothing to commit is not a failure
        run(["git", "commit", "-m", message], cwd=str(project_root), check=False)
        run(["git", "push"], cwd=str(project_root), check=True)
    except subprocess.CalledProcessError as e:
        raise BootstrapError(f"git {e.cmd[1]} failed with exit code {e.returncode}") from e


class Bootstrapper:
    """Runs the bootstrap passes in order.

    ``target_clients`` maps a stage label ("Beta", "Prod") to a CloudFormation
    client for that account; ``pipeline_client`` talks to the pipeline account.
    boto3 clients are thread-safe, so the same clients are shared with the
    worker threads of the parallel role deploy.
    """

    def __init__(
        self,
        accounts: Accounts,
        target_clients: Mapping[str, object],
        pipeline_client,
        pipelines: Sequence[str] = tuple(PIPELINES),
        pipeline_profile: Optional[str] = None,
        commit: bool = False,
        project_root: Path = PROJECT_ROOT,
        roles_dir: Path = CFN_ROLES_DIR,
        run: Callable = subprocess.run,
        max_workers: int = 4,
    ) -> None:
        unknown = [name for name in pipelines if name not in PIPELINES]
        if unknown:
            raise BootstrapError(f"Unknown pipelines: {', '.join(unknown)}")

        self.accounts = accounts
        self.target_clients = dict(target_clients)
        self.pipeline_client = pipeline_client
        self.pipelines = [PIPELINES[name] for name in pipelines]
        self.pipeline_profile = pipeline_profile
        self.commit = commit
        self.project_root = project_root
        self.roles_dir = roles_dir
        self.run_command = run
        self.max_workers = max_workers

        self.phase = BootstrapPhase.PENDING
        self.key_arns: Dict[str, str] = {}

        self._steps = {
            BootstrapPhase.PENDING: self.deploy_roles,
            BootstrapPhase.ROLES_DEPLOYED: self.deploy_pipelines,
            BootstrapPhase.PIPELINES_DEPLOYED: self.patch_roles,
            BootstrapPhase.ROLES_PATCHED: self.push_source,
        }

    @property
    def complete(self) -> bool:
        return self.phase is BootstrapPhase.COMPLETE

    def run(self) -> BootstrapPhase:
        """Advance through every remaining phase. A failing step leaves the phase where it was."""
        while not self.complete:
            logger.info("Bootstrap phase: %s", self.phase.value)
            self._steps[self.phase]()
            self.phase = NEXT_PHASE[self.phase]
        logger.info("Bootstrap complete")
        return self.phase

    def _template(self, file_name: str) -> str:
        return (self.roles_dir / file_name).read_text()

    def _role_parameters(self, stage: str, key_arns: Mapping[str, str]) -> Dict[str, str]:
        parameters = {"PipelineAccountID": self.accounts.pipeline, "Stage": stage}
        parameters.update(key_arns)
        return parameters

    def deploy_roles(self) -> None:
        """First pass: role stacks into every target account, in parallel.

        Key ARNs of pipelines that are already deployed are passed along, so
        re-running the bootstrap does not strip their KMS access.
        """
        existing = self.published_key_arns()
        if existing:
            logger.info("Keeping published key ARNs: %s", ", ".join(sorted(existing)))
        jobs = [
            (stage, stack_name, file_name)
            for stage in self.accounts.targets()
            for stack_name, file_name in ROLE_STACKS
        ]
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(
                    deploy_stack,
                    self.target_clients[stage],
                    stack_name,
                    self._template(file_name),
                    self._role_parameters(stage, existing),
                ): f"{stage}/{stack_name}"
                for stage, stack_name, file_name in jobs
            }
            # Every deploy is joined before the result is judged
            done, _ = wait(futures)

        failures = []
        for future in done:
            error = future.exception()
            if error is not None:
                logger.error("Role deploy %s failed: %s", futures[future], error)
                failures.append(f"{futures[future]}: {error}")
        if failures:
            raise BootstrapError("Role deployment failed for " + "; ".join(sorted(failures)))

    def deploy_pipelines(self) -> None:
        """Deploy each selected pipeline stack and read its artifact key ARN."""
        for target in self.pipelines:
            command = pipeline_deploy_command(target, self.accounts, self.pipeline_profile)
            logger.info("Deploying %s: %s", target.stack_name, " ".join(command))
            try:
                self.run_command(command, cwd=str(self.project_root), check=True)
            except subprocess.CalledProcessError as e:
                raise BootstrapError(f"cdk deploy {target.stack_name} failed with exit code {e.returncode}") from e

            try:
                outputs = get_stack_outputs(self.pipeline_client, target.stack_name)
            except StackOutputError as e:
                raise BootstrapError(str(e)) from e

            key_arn = outputs.get(target.key_output)
            if not key_arn:
                raise BootstrapError(
                    f"{target.stack_name} did not output {target.key_output}; roles were not patched"
                )
            self.key_arns[target.key_parameter] = key_arn
            logger.info("%s = %s", target.key_output, key_arn)

        # Pipelines deployed by an earlier run keep their access when the roles are patched
        selected = {target.name for target in self.pipelines}
        for parameter, key_arn in self.published_key_arns(skip=selected).items():
            self.key_arns.setdefault(parameter, key_arn)

    def published_key_arns(self, skip: Sequence[str] = ()) -> Dict[str, str]:
        """Key ARN parameters of the pipeline stacks that already exist."""
        key_arns = {}
        for name, target in PIPELINES.items():
            if name in skip:
                continue
            try:
                outputs = get_stack_outputs(self.pipeline_client, target.stack_name)
            except StackOutputError:
                continue
            if outputs.get(target.key_output):
                key_arns[target.key_parameter] = outputs[target.key_output]
        return key_arns

    def patch_roles(self) -> None:
        """Second pass: redeploy the role stacks with the key ARNs, one at a time to avoid throttling."""
        if not self.key_arns:
            raise BootstrapError("No artifact key ARNs collected; refusing to patch roles")

        for stage in self.accounts.targets():
            for stack_name, file_name in ROLE_STACKS:
                deploy_stack(
                    self.target_clients[stage],
                    stack_name,
                    self._template(file_name),
                    self._role_parameters(stage, self.key_arns),
                )

    def push_source(self) -> None:
        """Commit and push the working tree so the new pipelines run."""
        if not self.commit:
            logger.info("Skipping commit; push the repository to start the pipelines")
            return

        commit_and_push(self.run_command, self.project_root)
