"""
Tests for the command line entrypoint
"""

# Standard
from unittest import mock
import argparse
import logging

# Third Party
import pytest

# Local
from csm_operator import config
from csm_operator.__main__ import add_library_config_args, main, update_library_config
from csm_operator.cmd import RunOperatorCmd
from csm_operator.config import library_config as config_dict
from csm_operator.deploy_manager import DryRunDeployManager
from csm_operator.log_format import CsmJsonFormatter
from csm_operator.test_helpers.helpers import configure_logging, library_config

## Helpers #####################################################################

CONFIGMAP = """
apiVersion: v1
kind: ConfigMap
metadata:
  name: {name}
  namespace: test-csm
"""


@pytest.fixture
def resource_dir(tmp_path):
    (tmp_path / "a.yaml").write_text(
        CONFIGMAP.format(name="a") + "---\n" + CONFIGMAP.format(name="b")
    )
    (tmp_path / "c.yml").write_text(CONFIGMAP.format(name="c"))
    (tmp_path / "notes.txt").write_text("not yaml: [")
    return str(tmp_path)


@pytest.fixture
def restored_config():
    """Put back every library config value that main overrides"""
    with library_config(**dict(config_dict.items())):
        yield
    configure_logging()


## Tests #######################################################################


def test_parse_resource_dir(resource_dir):
    resources = RunOperatorCmd._parse_resource_dir(  # pylint: disable=protected-access
        resource_dir
    )
    assert [res["metadata"]["name"] for res in resources] == ["a", "b", "c"]
    assert not RunOperatorCmd._parse_resource_dir(  # pylint: disable=protected-access
        None
    )


def test_library_config_args():
    parser = argparse.ArgumentParser()
    setters = add_library_config_args(parser)
    assert setters["dry_run"] == ["dry_run"]
    args = parser.parse_args(
        ["--dry_run", "--backoff_max_seconds", "30", "--k8s_version", "1.28"]
    )
    assert args.dry_run is True
    assert args.backoff_max_seconds == 30.0
    assert args.max_concurrent_reconciles == 1

    with library_config(**dict(config_dict.items())):
        update_library_config(args, setters)
        assert config.dry_run
        assert config.k8s_version == "1.28"
    assert not config.dry_run


def test_resource_dir_requires_dry_run(resource_dir):
    args = argparse.Namespace(resource_dir=resource_dir, namespace=None)
    with library_config(dry_run=False):
        with pytest.raises(AssertionError):
            RunOperatorCmd().cmd(args)


@pytest.mark.usefixtures("restored_config")
def test_main_dry_run(resource_dir):
    """The run command builds a dry run manager from the resource directory"""
    with mock.patch(
        "csm_operator.cmd.run_operator_cmd.OperatorManager"
    ) as manager_class, mock.patch("csm_operator.cmd.run_operator_cmd.signal.signal"):
        manager_class.return_value.start.return_value = False
        main(["run", "--dry_run", "-r", resource_dir, "-n", "test-csm"])

    kwargs = manager_class.call_args.kwargs
    assert kwargs["namespace_list"] == ["test-csm"]
    deploy_manager = kwargs["deploy_manager"]
    assert isinstance(deploy_manager, DryRunDeployManager)
    success, found = deploy_manager.get_object_current_state(
        "ConfigMap", "c", "test-csm", "v1"
    )
    assert success and found is not None
    manager_class.return_value.wait.assert_not_called()


@pytest.mark.usefixtures("restored_config")
def test_main_default_command():
    """Without a command the run command is used against the real cluster"""
    with mock.patch(
        "csm_operator.cmd.run_operator_cmd.OperatorManager"
    ) as manager_class, mock.patch("csm_operator.cmd.run_operator_cmd.signal.signal"):
        main(["--log_level", "error"])
    assert manager_class.call_args.kwargs["deploy_manager"] is None
    manager_class.return_value.wait.assert_called_once()
    assert config.log_level == "error"


@pytest.mark.usefixtures("restored_config")
def test_main_json_logging():
    with mock.patch(
        "csm_operator.cmd.run_operator_cmd.OperatorManager"
    ) as manager_class, mock.patch(
        "csm_operator.cmd.run_operator_cmd.signal.signal"
    ), mock.patch(
        "csm_operator.__main__.alog.configure"
    ) as configure_mock:
        manager_class.return_value.start.return_value = False
        main(["run", "--log_json"])
    assert isinstance(configure_mock.call_args.kwargs["formatter"], CsmJsonFormatter)


def test_json_formatter_adds_resource_fields():
    record = logging.LogRecord("TEST", logging.INFO, __file__, 1, "msg", None, None)
    record.reconcile_id = "ABC"
    record.resource = {
        "kind": "ContainerStorageModule",
        "apiVersion": "storage.dell.com/v1",
        "metadata": {"name": "isilon", "namespace": "test-csm"},
    }
    CsmJsonFormatter().format(record)
    assert record.reconciliationId == "ABC"
    assert record.kind == "ContainerStorageModule"
    assert record.namespace == "test-csm"
    assert record.resourceName == "isilon"
