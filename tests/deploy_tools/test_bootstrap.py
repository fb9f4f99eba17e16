import subprocess
import threading
from unittest.mock import Mock, patch

import pytest

from deploy_tools.bootstrap import BootstrapPhase, Bootstrapper, cdk_deploy_command, pipeline_deploy_command
from deploy_tools.errors import BootstrapError, StackOutputError
from deploy_tools.settings import PIPELINES, Accounts

ACCOUNTS = Accounts(pipeline="111111111111", beta="222222222222", prod="333333333333")

KEY_OUTPUTS = {
    "PipelineDeploymentStack": {"ArtifactBucketEncryptionKeyArn": "arn:aws:kms:us-west-2:111111111111:key/backend"},
    "FrontEndPipelineDeploymentStack": {
        "FrontEndArtifactBucketEncryptionKeyArn": "arn:aws:kms:us-west-2:111111111111:key/frontend"
    },
    "WebsitePipelineStack": {
        "WebsiteArtifactBucketEncryptionKeyArn": "arn:aws:kms:us-west-2:111111111111:key/website"
    },
}


class RecordingDeploy:
    """Stands in for deploy_stack and records every call, from any thread."""

    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on
        self._lock = threading.Lock()

    def __call__(self, cfn, stack_name, template_body, parameters):
        with self._lock:
            self.calls.append((cfn, stack_name, dict(parameters)))
        if self.fail_on == (cfn, stack_name):
            raise RuntimeError("CREATE_FAILED")
        return True


@pytest.fixture
def clients():
    return {"Beta": Mock(name="beta"), "Prod": Mock(name="prod")}


class PipelineAccount:
    """Pipeline stacks that `cdk deploy` creates and `describe_stacks` then reports."""

    def __init__(self, deployed=()):
        self.deployed = set(deployed)

    def run(self, command, cwd=None, check=False):
        if command[:2] == ["cdk", "deploy"]:
            self.deployed.add(command[2])

    def outputs(self, pipeline_client, stack_name):
        if stack_name not in self.deployed:
            raise StackOutputError(f"Stack {stack_name} does not exist")
        return KEY_OUTPUTS[stack_name]


@pytest.fixture
def pipeline_account():
    account = PipelineAccount()
    with patch("deploy_tools.bootstrap.get_stack_outputs", side_effect=account.outputs):
        yield account


def make_bootstrapper(clients, account=None, **kwargs):
    kwargs.setdefault("run", Mock(side_effect=account.run if account else None))
    return Bootstrapper(ACCOUNTS, target_clients=clients, pipeline_client=Mock(name="pipeline"), **kwargs)


class TestBootstrapper:
    """Test suite for the two-pass bootstrap"""

    def test_full_run_patches_roles_with_every_key(self, clients, pipeline_account):
        # Given
        deploy = RecordingDeploy()
        bootstrapper = make_bootstrapper(clients, pipeline_account)

        # When
        with patch("deploy_tools.bootstrap.deploy_stack", deploy):
            phase = bootstrapper.run()

        # Then
        assert phase is BootstrapPhase.COMPLETE
        assert bootstrapper.complete
        assert len(deploy.calls) == 8
        first_pass, second_pass = deploy.calls[:4], deploy.calls[4:]
        assert all(set(params) == {"PipelineAccountID", "Stage"} for _, _, params in first_pass)
        for _, _, params in second_pass:
            assert params["KeyArn"].endswith("key/backend")
            assert params["FrontEndKeyArn"].endswith("key/frontend")
            assert params["WebsiteKeyArn"].endswith("key/website")
        assert bootstrapper.run_command.call_count == 3

    def test_missing_key_output_stops_before_patching(self, clients, pipeline_account):
        # Given
        deploy = RecordingDeploy()
        bootstrapper = make_bootstrapper(clients, pipelines=("backend",))

        # When
        with patch("deploy_tools.bootstrap.deploy_stack", deploy), \
                patch("deploy_tools.bootstrap.get_stack_outputs", return_value={}):
            with pytest.raises(BootstrapError, match="did not output ArtifactBucketEncryptionKeyArn"):
                bootstrapper.run()

        # Then
        assert bootstrapper.phase is BootstrapPhase.ROLES_DEPLOYED
        assert len(deploy.calls) == 4
        assert not any("KeyArn" in params for _, _, params in deploy.calls)

    def test_every_role_deploy_is_joined_before_failing(self, clients, pipeline_account):
        deploy = RecordingDeploy(fail_on=(clients["Beta"], "CodePipelineCrossAccountRole"))
        bootstrapper = make_bootstrapper(clients)

        with patch("deploy_tools.bootstrap.deploy_stack", deploy):
            with pytest.raises(BootstrapError, match="Beta/CodePipelineCrossAccountRole"):
                bootstrapper.deploy_roles()

        assert len(deploy.calls) == 4
        assert bootstrapper.phase is BootstrapPhase.PENDING

    def test_role_parameters_carry_the_stage(self, clients, pipeline_account):
        deploy = RecordingDeploy()
        bootstrapper = make_bootstrapper(clients)

        with patch("deploy_tools.bootstrap.deploy_stack", deploy):
            bootstrapper.deploy_roles()

        stages = {(cfn, params["Stage"]) for cfn, _, params in deploy.calls}
        assert stages == {(clients["Beta"], "Beta"), (clients["Prod"], "Prod")}
        assert all(params["PipelineAccountID"] == "111111111111" for _, _, params in deploy.calls)

    def test_rerun_keeps_published_keys_in_the_first_pass(self, clients, pipeline_account):
        # Given
        pipeline_account.deployed.update(KEY_OUTPUTS)
        deploy = RecordingDeploy()
        bootstrapper = make_bootstrapper(clients, pipeline_account)

        # When
        with patch("deploy_tools.bootstrap.deploy_stack", deploy):
            bootstrapper.deploy_roles()

        # Then
        assert len(deploy.calls) == 4
        for _, _, params in deploy.calls:
            assert params["KeyArn"].endswith("key/backend")
            assert params["FrontEndKeyArn"].endswith("key/frontend")
            assert params["WebsiteKeyArn"].endswith("key/website")

    def test_rerun_with_one_pipeline_keeps_only_that_key(self, clients, pipeline_account):
        pipeline_account.deployed.add("PipelineDeploymentStack")
        deploy = RecordingDeploy()
        bootstrapper = make_bootstrapper(clients, pipeline_account)

        with patch("deploy_tools.bootstrap.deploy_stack", deploy):
            bootstrapper.deploy_roles()

        assert all(
            set(params) == {"PipelineAccountID", "Stage", "KeyArn"} for _, _, params in deploy.calls
        )

    def test_failed_cdk_deploy(self, clients):
        run = Mock(side_effect=subprocess.CalledProcessError(1, ["cdk", "deploy"]))
        bootstrapper = make_bootstrapper(clients, run=run)

        with pytest.raises(BootstrapError, match="failed with exit code 1"):
            bootstrapper.deploy_pipelines()

    def test_existing_keys_survive_partial_runs(self, clients, pipeline_account):
        # Given
        pipeline_account.deployed.update(["PipelineDeploymentStack", "FrontEndPipelineDeploymentStack"])
        bootstrapper = make_bootstrapper(clients, pipeline_account, pipelines=("website",))

        # When
        bootstrapper.deploy_pipelines()

        # Then
        assert set(bootstrapper.key_arns) == {"KeyArn", "FrontEndKeyArn", "WebsiteKeyArn"}
        assert bootstrapper.run_command.call_count == 1

    def test_patch_requires_keys(self, clients):
        with pytest.raises(BootstrapError, match="No artifact key ARNs"):
            make_bootstrapper(clients).patch_roles()

    def test_unknown_pipeline(self, clients):
        with pytest.raises(BootstrapError, match="Unknown pipelines: mobile"):
            make_bootstrapper(clients, pipelines=("mobile",))

    def test_commit_and_push(self, clients):
        bootstrapper = make_bootstrapper(clients, commit=True)

        bootstrapper.push_source()

        commands = [c.args[0] for c in bootstrapper.run_command.call_args_list]
        assert commands == [
            ["git", "add", "."],
            ["git", "commit", "-m", "Automated Commit"],
            ["git", "push"],
        ]

    def test_push_skipped_by_default(self, clients):
        bootstrapper = make_bootstrapper(clients)

        bootstrapper.push_source()

        bootstrapper.run_command.assert_not_called()


def test_pipeline_deploy_command():
    command = pipeline_deploy_command(PIPELINES["frontend"], ACCOUNTS, "pipeline")

    assert command[:3] == ["cdk", "deploy", "FrontEndPipelineDeploymentStack"]
    assert "beta-account=222222222222" in command
    assert command[command.index("--output") + 1] == "cdk.out/frontend-pipeline"
    assert command[-2:] == ["--profile", "pipeline"]


def test_cdk_deploy_command_without_profile():
    command = cdk_deploy_command("Example", ACCOUNTS, None, "cdk.out/example")

    assert "--profile" not in command
    assert command[-2:] == ["--output", "cdk.out/example"]
