import os

import pytest

from portfolio_deploy import scripts
from portfolio_deploy.errors import StepVerificationError
from portfolio_deploy.templates import status_script


@pytest.fixture
def project(config):
    os.makedirs(config.project_dir)
    return config.project_dir


def test_scripts_written_executable(ctx, project):
    scripts.write_scripts(ctx)
    scripts.verify_scripts(ctx)

    update = os.path.join(project, scripts.UPDATE_SCRIPT)
    with open(update) as f:
        text = f.read()
    assert text.startswith("#!/bin/bash")
    assert f"cd {ctx.config.project_dir}" in text
    assert f"sudo mkdir -p {ctx.config.web_root}" in text
    assert os.access(update, os.X_OK)


def test_existing_update_script_kept(ctx, project):
    update = os.path.join(project, scripts.UPDATE_SCRIPT)
    with open(update, "w") as f:
        f.write("#!/bin/bash\necho custom\n")
    os.chmod(update, 0o755)

    scripts.write_scripts(ctx)

    with open(update) as f:
        assert f.read() == "#!/bin/bash\necho custom\n"


def test_stale_status_script_rewritten(ctx, project):
    scripts.write_scripts(ctx)
    status = os.path.join(project, scripts.STATUS_SCRIPT)
    with open(status, "w") as f:
        f.write("#!/bin/bash\n")

    with pytest.raises(StepVerificationError, match="out of date"):
        scripts.verify_scripts(ctx)

    scripts.write_scripts(ctx)
    with open(status) as f:
        assert f.read() == status_script(ctx.config)


def test_non_executable_script_fails_verification(ctx, project):
    scripts.write_scripts(ctx)
    os.chmod(os.path.join(project, scripts.STATUS_SCRIPT), 0o644)

    with pytest.raises(StepVerificationError, match="not executable"):
        scripts.verify_scripts(ctx)
