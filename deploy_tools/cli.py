"""
deploy-tools: operator commands for the cross-account pipelines.

    deploy-tools bootstrap [--pipeline backend|frontend|website]... [--commit]
    deploy-tools cleanup
    deploy-tools deploy-prod-domain [--commit]
    deploy-tools stack-outputs --stack-name NAME [--profile PROFILE]

and commands the pipelines run from CodeBuild against a target account:

    deploy-tools invalidate-cache --stack-name NAME --role-arn ARN
    deploy-tools check-device-farm-results --stack-name NAME --role-arn ARN
"""

import logging
import subprocess
from contextlib import contextmanager

import click

from deploy_tools.aws import assume_role_session, profile_session
from deploy_tools.bootstrap import Bootstrapper, commit_and_push
from deploy_tools.cleanup import cleanup as run_cleanup
from deploy_tools.device_farm import PASSED, check_latest_run
from deploy_tools.domain import DOMAIN_OUTPUTS, deploy_prod_domain
from deploy_tools.errors import DeployToolsError
from deploy_tools.invalidation import invalidate_distribution
from deploy_tools.settings import DEFAULT_PROFILES, DEFAULT_REGION, PIPELINES, PROJECT_ROOT, load_accounts
from deploy_tools.stacks import get_stack_outputs, require_output

logger = logging.getLogger(__name__)


@contextmanager
def reported_errors():
    """Turn tooling errors into a click error message and a non-zero exit."""
    try:
        yield
    except DeployToolsError as e:
        raise click.ClickException(str(e)) from e


def profile_options(command):
    command = click.option("--prod-profile", default=DEFAULT_PROFILES["prod"], show_default=True,
                           help="AWS profile for the Prod account")(command)
    command = click.option("--beta-profile", default=DEFAULT_PROFILES["beta"], show_default=True,
                           help="AWS profile for the Beta account")(command)
    command = click.option("--pipeline-profile", default=DEFAULT_PROFILES["pipeline"], show_default=True,
                           help="AWS profile for the pipeline account")(command)
    return command


@click.group()
@click.option("--region", default=DEFAULT_REGION, show_default=True, help="AWS region")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, region, verbose):
    """Bootstrap, inspect and tear down the cross-account pipelines."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname).1s] %(message)s",
        datefmt="%H:%M:%S",
    )
    ctx.ensure_object(dict)
    ctx.obj["region"] = region


@cli.command()
@click.option("--pipeline", "pipelines", multiple=True, type=click.Choice(list(PIPELINES)),
              help="Pipeline to deploy; repeat for several (default: all)")
@click.option("--commit/--no-commit", default=False, show_default=True,
              help="git commit and push afterwards to start the pipelines")
@profile_options
@click.pass_context
def bootstrap(ctx, pipelines, commit, pipeline_profile, beta_profile, prod_profile):
    """Deploy the cross-account roles and pipelines, then grant the roles the artifact keys."""
    with reported_errors():
        accounts = load_accounts()
        region = ctx.obj["region"]
        bootstrapper = Bootstrapper(
            accounts,
            target_clients={
                "Beta": profile_session(beta_profile, region).client("cloudformation"),
                "Prod": profile_session(prod_profile, region).client("cloudformation"),
            },
            pipeline_client=profile_session(pipeline_profile, region).client("cloudformation"),
            pipelines=pipelines or tuple(PIPELINES),
            pipeline_profile=pipeline_profile,
            commit=commit,
        )
        bootstrapper.run()

    click.echo("Bootstrap complete")
    for parameter, arn in sorted(bootstrapper.key_arns.items()):
        click.echo(f"  {parameter}: {arn}")


@cli.command()
@profile_options
@click.confirmation_option(prompt="Delete every pipeline, application and role stack?")
@click.pass_context
def cleanup(ctx, pipeline_profile, beta_profile, prod_profile):
    """Delete application stacks, pipelines and cross-account roles."""
    with reported_errors():
        accounts = load_accounts()
        region = ctx.obj["region"]
        pipeline_session = profile_session(pipeline_profile, region)
        target_sessions = {
            "Beta": profile_session(beta_profile, region),
            "Prod": profile_session(prod_profile, region),
        }
        run_cleanup(
            accounts,
            target_clients={stage: session.client("cloudformation") for stage, session in target_sessions.items()},
            pipeline_client=pipeline_session.client("cloudformation"),
            pipeline_s3=pipeline_session.resource("s3"),
            target_s3={stage: session.resource("s3") for stage, session in target_sessions.items()},
            region=region,
        )
    click.echo("Cleanup complete")


@cli.command("deploy-prod-domain")
@click.option("--prod-profile", default=DEFAULT_PROFILES["prod"], show_default=True,
              help="AWS profile for the Prod account")
@click.option("--commit/--no-commit", default=False, show_default=True,
              help="git commit and push afterwards so the website pipeline picks up the change")
@click.pass_context
def deploy_prod_domain_command(ctx, prod_profile, commit):
    """Deploy the Prod domain stack and print what the registrar needs."""
    with reported_errors():
        accounts = load_accounts()
        region = ctx.obj["region"]
        cfn = profile_session(prod_profile, region).client("cloudformation")
        outputs = deploy_prod_domain(accounts, cfn, region=region, profile=prod_profile, run=subprocess.run)
        if commit:
            commit_and_push(subprocess.run, PROJECT_ROOT, "Deploy production domain")

    for key in DOMAIN_OUTPUTS:
        click.echo(f"{key}: {outputs.get(key, '(not deployed)')}")
    if outputs.get("NameServers"):
        click.echo("Set these name servers at the domain registrar; DNS can take up to 48 hours to propagate")


@cli.command("stack-outputs")
@click.option("--stack-name", required=True)
@click.option("--profile", default=None, help="AWS profile (default credential chain if omitted)")
@click.pass_context
def stack_outputs(ctx, stack_name, profile):
    """Print the outputs of a stack."""
    with reported_errors():
        cfn = profile_session(profile, ctx.obj["region"]).client("cloudformation")
        outputs = get_stack_outputs(cfn, stack_name)

    for key, value in sorted(outputs.items()):
        click.echo(f"{key}\t{value}")


@cli.command("invalidate-cache")
@click.option("--stack-name", required=True, help="Stack that outputs the distribution id")
@click.option("--output-key", default="DistributionId", show_default=True)
@click.option("--role-arn", required=True, help="Role to assume in the account owning the distribution")
@click.pass_context
def invalidate_cache(ctx, stack_name, output_key, role_arn):
    """Invalidate every path of the distribution named by a stack output."""
    with reported_errors():
        session = assume_role_session(role_arn, ctx.obj["region"])
        outputs = get_stack_outputs(session.client("cloudformation"), stack_name)
        distribution_id = require_output(outputs, output_key, stack_name)
        invalidation_id = invalidate_distribution(session.client("cloudfront"), distribution_id)

    click.echo(f"Invalidation {invalidation_id} started for {distribution_id}")


@cli.command("check-device-farm-results")
@click.option("--stack-name", required=True, help="Device Farm stack that outputs ResultsBucketName")
@click.option("--role-arn", required=True, help="Role to assume in the account running the tests")
@click.option("--timeout", default=3600, show_default=True, help="Seconds to wait for the run")
@click.pass_context
def check_device_farm_results(ctx, stack_name, role_arn, timeout):
    """Wait for the latest Device Farm run and fail unless it passed."""
    with reported_errors():
        session = assume_role_session(role_arn, ctx.obj["region"])
        outputs = get_stack_outputs(session.client("cloudformation"), stack_name)
        bucket = require_output(outputs, "ResultsBucketName", stack_name)
        summary = check_latest_run(
            session.client("s3"),
            session.client("devicefarm"),
            bucket,
            timeout_seconds=timeout,
        )

    click.echo(f"Device Farm result: {summary['result']}")
    if summary["result"] != PASSED:
        raise click.ClickException(f"Device Farm run {summary['runArn']} did not pass")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
