from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from deploy_tools.errors import StackOutputError
from deploy_tools.stacks import delete_stack, deploy_stack, get_stack_outputs, require_output


def client_error(code, message, operation="DescribeStacks"):
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


MISSING = client_error("ValidationError", "Stack with id Example does not exist")


def stack(status="CREATE_COMPLETE", outputs=None):
    return {"Stacks": [{"StackName": "Example", "StackStatus": status, "Outputs": outputs or []}]}


class TestDeployStack:
    def test_creates_missing_stack(self):
        # Given
        cfn = Mock()
        cfn.describe_stacks.side_effect = MISSING

        # When
        changed = deploy_stack(cfn, "Example", "template", {"Stage": "Beta"})

        # Then
        assert changed is True
        request = cfn.create_stack.call_args.kwargs
        assert request["Parameters"] == [{"ParameterKey": "Stage", "ParameterValue": "Beta"}]
        assert request["Capabilities"] == ["CAPABILITY_NAMED_IAM"]
        cfn.get_waiter.assert_called_once_with("stack_create_complete")
        cfn.get_waiter.return_value.wait.assert_called_once_with(StackName="Example")

    def test_updates_existing_stack(self):
        cfn = Mock()
        cfn.describe_stacks.return_value = stack()

        assert deploy_stack(cfn, "Example", "template", {}) is True
        cfn.update_stack.assert_called_once()
        cfn.get_waiter.assert_called_once_with("stack_update_complete")

    def test_no_updates_is_success(self):
        # Given
        cfn = Mock()
        cfn.describe_stacks.return_value = stack()
        cfn.update_stack.side_effect = client_error(
            "ValidationError", "No updates are to be performed.", "UpdateStack"
        )

        # When
        changed = deploy_stack(cfn, "Example", "template", {})

        # Then
        assert changed is False
        cfn.get_waiter.assert_not_called()

    def test_other_update_errors_propagate(self):
        cfn = Mock()
        cfn.describe_stacks.return_value = stack()
        cfn.update_stack.side_effect = client_error("ValidationError", "Template format error", "UpdateStack")

        with pytest.raises(ClientError):
            deploy_stack(cfn, "Example", "template", {})

    def test_rolled_back_stack_is_recreated(self):
        cfn = Mock()
        cfn.describe_stacks.return_value = stack("ROLLBACK_COMPLETE")

        assert deploy_stack(cfn, "Example", "template", {}) is True
        cfn.delete_stack.assert_called_once_with(StackName="Example")
        cfn.create_stack.assert_called_once()
        cfn.update_stack.assert_not_called()


class TestStackOutputs:
    def test_outputs_as_dict(self):
        cfn = Mock()
        cfn.describe_stacks.return_value = stack(
            outputs=[{"OutputKey": "DistributionId", "OutputValue": "E123"}]
        )

        assert get_stack_outputs(cfn, "Example") == {"DistributionId": "E123"}

    def test_missing_stack_raises(self):
        cfn = Mock()
        cfn.describe_stacks.side_effect = MISSING

        with pytest.raises(StackOutputError, match="does not exist"):
            get_stack_outputs(cfn, "Example")

    def test_other_errors_propagate(self):
        cfn = Mock()
        cfn.describe_stacks.side_effect = client_error("AccessDenied", "not authorized")

        with pytest.raises(ClientError):
            get_stack_outputs(cfn, "Example")

    def test_require_output(self):
        with pytest.raises(StackOutputError, match="DistributionId"):
            require_output({}, "DistributionId", "Example")


def test_delete_missing_stack_is_a_no_op():
    cfn = Mock()
    cfn.describe_stacks.side_effect = MISSING

    assert delete_stack(cfn, "Example") is False
    cfn.delete_stack.assert_not_called()
