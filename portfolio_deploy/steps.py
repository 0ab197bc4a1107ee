"""The default deployment pipeline, in execution order."""

from typing import Optional

from . import certs, postdeploy, proxy, scripts, site, system
from .errors import ExitCode
from .pipeline import Decision, Pipeline, Step, fail_closed
from .preflight import gather_facts

DEFAULT_STEPS = (
    Step(
        name="packages",
        order=10,
        description="Installing required packages",
        action=system.install_packages,
        verify=system.verify_packages,
    ),
    Step(
        name="nodejs",
        order=20,
        description="Installing Node.js and npm",
        action=system.install_nodejs,
        verify=system.verify_nodejs,
    ),
    Step(
        name="firewall",
        order=30,
        description="Configuring firewall",
        action=system.configure_firewall,
        verify=system.verify_firewall,
    ),
    Step(
        name="build",
        order=40,
        description="Building the site",
        action=site.build_action,
        verify=site.build_verify,
        exit_code=ExitCode.BUILD,
    ),
    Step(
        name="publish",
        order=50,
        description="Publishing build output to the serving root",
        action=site.publish_action,
        verify=site.publish_verify,
        exit_code=ExitCode.BUILD,
    ),
    Step(
        name=proxy.PROVISIONAL_STEP,
        order=60,
        description="Configuring Nginx (temporary HTTP)",
        action=proxy.install_provisional,
        verify=proxy.verify_provisional,
        rollback=proxy.make_rollback(proxy.PROVISIONAL_STEP),
        exit_code=ExitCode.PROXY,
    ),
    Step(
        name="certificate",
        order=70,
        description="Obtaining TLS certificate",
        action=certs.obtain_certificate,
        verify=certs.verify_certificate,
        force=certs.force_renewal,
        exit_code=ExitCode.CERTIFICATE,
    ),
    Step(
        name=proxy.FINAL_STEP,
        order=80,
        description="Installing final HTTPS configuration",
        action=proxy.install_final,
        verify=proxy.verify_final,
        rollback=proxy.make_rollback(proxy.FINAL_STEP),
        exit_code=ExitCode.PROXY,
    ),
    Step(
        name="renewal",
        order=90,
        description="Enabling automatic certificate renewal",
        action=certs.enable_renewal_timer,
        verify=certs.verify_renewal,
        recoverable=True,
    ),
    Step(
        name="services",
        order=100,
        description="Enabling services at boot",
        action=system.enable_services,
        verify=system.verify_services,
    ),
    Step(
        name="post-deploy",
        order=110,
        description="Probing the public site",
        action=postdeploy.verify_public,
        recoverable=True,
    ),
    Step(
        name="helper-scripts",
        order=120,
        description="Writing operator helper scripts",
        action=scripts.write_scripts,
        verify=scripts.verify_scripts,
        recoverable=True,
    ),
)


def build_pipeline(decide: Optional[Decision] = None) -> Pipeline:
    """Pipeline with pre-flight fact gathering and every default step registered."""
    pipeline = Pipeline(preflight=gather_facts, decide=decide or fail_closed)
    for step in DEFAULT_STEPS:
        pipeline.register(step)
    return pipeline
