"""
Command Line Interface for K2P.
"""
import logging
import sys
from pathlib import Path
from typing import List

import click

from ..exceptions import PolicyGenerationError
from ..MANAGERS.policy_generator import PolicyGenerator, decode_policies
from ..UTILS.settings import GeneratorConfig, configure_logging

logger = logging.getLogger(__name__)


def _read_input(yaml_file):
    if yaml_file:
        with open(yaml_file, 'r') as f:
            return f.read()
    return sys.stdin.read()


def _policy_paths(path: Path, count: int) -> List[Path]:
    """
    One file per policy. A single policy keeps the path, several get their
    index before the suffix: policy0.rego, policy1.rego, ...
    """
    if count == 1:
        return [path]
    return [path.with_name(f"{path.stem}{index}{path.suffix}") for index in range(count)]


def _fail(error: Exception):
    click.echo(f"Error: {error}", err=True)
    sys.exit(1)


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Log debug messages to stderr')
@click.pass_context
def cli(ctx, verbose):
    """
    K2P - Kubernetes to agent Policy compiler.

    Generates the policy a confidential container sandbox enforces for a
    Kubernetes workload, and adds it to the workload YAML.
    """
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose


@cli.command()
@click.option('--yaml-file', '-y', type=click.Path(exists=True, dir_okay=False), help='Workload YAML file. Reads stdin when omitted.')
@click.option('--infra-data', '-j', 'infra_data_file', type=click.Path(dir_okay=False), help='Infra data JSON file [env: K2P_INFRA_DATA]')
@click.option('--rules-file', '-r', type=click.Path(dir_okay=False), help='Policy rules file [env: K2P_RULES_FILE]')
@click.option('--config-map-file', '-c', 'config_map_files', multiple=True, type=click.Path(exists=True, dir_okay=False), help='ConfigMap YAML file used for env values')
@click.option('--use-cached-files', '-u', is_flag=True, help='Reuse layer files found in the layers cache')
@click.option('--silent-unsupported-fields', '-s', is_flag=True, help='Warn about unsupported YAML fields instead of failing')
@click.option('--raw-out', is_flag=True, help='Print the policy text')
@click.option('--base64-out', is_flag=True, help='Print the encoded policy')
@click.option('--policy-out', '-p', type=click.Path(dir_okay=False), help='Write the policy text to a file')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write the annotated YAML to a file instead of stdout')
@click.pass_context
def generate(ctx, yaml_file, infra_data_file, rules_file, config_map_files, use_cached_files,
             silent_unsupported_fields, raw_out, base64_out, policy_out, output):
    """Generate the policy of a workload and add it to its YAML."""
    try:
        config = GeneratorConfig.from_env(
            yaml_file=yaml_file,
            infra_data_file=infra_data_file,
            rules_file=rules_file,
            config_map_files=list(config_map_files),
            use_cached_files=use_cached_files,
            silent_unsupported_fields=silent_unsupported_fields,
            raw_out=raw_out,
            base64_out=base64_out,
            policy_out=policy_out,
            output=output,
            log_level='DEBUG' if ctx.obj.get('verbose') else None,
        )
    except ValueError as e:
        _fail(e)

    configure_logging(config.log_level)

    try:
        generator = PolicyGenerator(config)
        content = _read_input(config.yaml_file)
        result = generator.generate(content)
        raw_policies = [generator.agent_policy.decode(p) for p in result.policies]

        if config.policy_out:
            for path, policy in zip(_policy_paths(config.policy_out, len(raw_policies)), raw_policies):
                with open(path, 'w') as f:
                    f.write(policy)
                logger.info("Policy written to %s", path)
        if config.output:
            with open(config.output, 'w') as f:
                f.write(result.yaml)
    except (PolicyGenerationError, OSError) as e:
        _fail(e)

    if config.raw_out:
        for policy in raw_policies:
            click.echo(policy)
    if config.base64_out:
        for policy in result.policies:
            click.echo(policy)

    if config.output:
        click.echo(f"Annotated YAML written to {config.output}", err=True)
    elif not (config.raw_out or config.base64_out):
        click.echo(result.yaml, nl=False)


@cli.command()
@click.option('--yaml-file', '-y', type=click.Path(exists=True, dir_okay=False), help='Annotated YAML file. Reads stdin when omitted.')
@click.pass_context
def decode(ctx, yaml_file):
    """Print the policies found in annotated YAML."""
    configure_logging('DEBUG' if ctx.obj.get('verbose') else GeneratorConfig.from_env().log_level)

    try:
        policies = decode_policies(_read_input(yaml_file))
    except (PolicyGenerationError, OSError) as e:
        _fail(e)

    for policy in policies:
        click.echo(policy)


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
