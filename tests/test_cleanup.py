"""
Tests for the DifferentialCleanup
"""

# Third Party
import pytest

# Local
from csm_operator.cleanup import DifferentialCleanup
from csm_operator.exceptions import CleanupError
from csm_operator.modules.pipeline import ModulePipeline
from csm_operator.operator_config import OperatorConfig
from csm_operator.resource import ContainerStorageModule
from csm_operator.snapshot import AppliedSnapshot
from csm_operator.synchronizer import ResourceSynchronizer
from csm_operator.test_helpers.helpers import (
    MockDeployManager,
    TEST_NAMESPACE,
    make_csm,
    resolve_bundle,
)

## Helpers #####################################################################


def observability_csm(enabled=True, components=None):
    return ContainerStorageModule(
        make_csm(
            modules=[
                {
                    "name": "observability",
                    "enabled": enabled,
                    "components": components or [],
                }
            ]
        )
    )


def deployed_cleanup(cr):
    """Deploy the standalone objects of a resource and build a cleanup over
    the resulting cluster
    """
    dm = MockDeployManager()
    pipeline = ModulePipeline(OperatorConfig())
    synchronizer = ResourceSynchronizer(dm)
    for _, objects in pipeline.standalone_objects(cr):
        synchronizer.apply_objects(objects)
    return dm, DifferentialCleanup(pipeline, synchronizer)


## Tests #######################################################################


def test_nothing_to_clean():
    cr = observability_csm()
    dm, cleanup = deployed_cleanup(cr)
    assert not cleanup.cleanup(cr, None)
    assert not cleanup.cleanup(cr, AppliedSnapshot.from_resource(cr))
    dm.disable.assert_not_called()


def test_disabled_module():
    """All objects of a module that was switched off are deleted"""
    previous = observability_csm()
    dm, cleanup = deployed_cleanup(previous)
    assert dm.has_obj("Deployment", "karavi-topology", "karavi")

    assert cleanup.cleanup(
        observability_csm(enabled=False), AppliedSnapshot.from_resource(previous)
    )
    assert not dm.has_obj("Deployment", "karavi-topology", "karavi")
    assert not dm.has_obj("Deployment", "otel-collector", "karavi")
    assert not dm.has_obj("Deployment", "karavi-metrics-powerscale", "karavi")


def test_disabled_component():
    """Only the objects of a component that was switched off are deleted"""
    previous = observability_csm()
    dm, cleanup = deployed_cleanup(previous)

    current = observability_csm(components=[{"name": "topology", "enabled": False}])
    assert cleanup.cleanup(current, AppliedSnapshot.from_resource(previous))
    assert not dm.has_obj("Deployment", "karavi-topology", "karavi")
    assert not dm.has_obj("Certificate", "karavi-topology", "karavi")
    assert dm.has_obj("Deployment", "otel-collector", "karavi")
    assert dm.has_obj("Issuer", "selfsigned", "karavi")


def test_unknown_module_in_snapshot():
    """A snapshot module that can no longer be rendered is skipped"""
    cr = ContainerStorageModule(make_csm())
    previous = cr.with_spec(
        {**cr.spec, "modules": [{"name": "not-a-module", "enabled": True}]}
    )
    _, cleanup = deployed_cleanup(cr)
    assert not cleanup.cleanup(cr, AppliedSnapshot.from_resource(previous))


def test_remove_all():
    cr = observability_csm()
    dm, cleanup = deployed_cleanup(cr)
    bundle = resolve_bundle(cr.manifest)
    cleanup.synchronizer.sync_bundle(bundle)
    assert dm.has_obj("DaemonSet", "isilon-node", TEST_NAMESPACE)

    assert cleanup.remove_all(cr, bundle)
    assert not dm.has_obj("DaemonSet", "isilon-node", TEST_NAMESPACE)
    assert not dm.has_obj("Deployment", "isilon-controller", TEST_NAMESPACE)
    assert not dm.has_obj("CSIDriver", "csi-isilon.dellemc.com")
    assert not dm.has_obj("Deployment", "karavi-topology", "karavi")


def test_remove_modules():
    cr = observability_csm()
    dm, cleanup = deployed_cleanup(cr)
    assert cleanup.remove_modules(cr, cr.enabled_modules())
    assert not dm.has_obj("Deployment", "otel-collector", "karavi")


def test_render_failure_raises():
    """Objects that can not be rendered are never silently skipped"""
    previous = observability_csm()
    dm, cleanup = deployed_cleanup(previous)
    broken = previous.with_spec(
        {
            **previous.spec,
            "modules": [
                {"name": "observability", "enabled": True, "configVersion": "v0.0.1"}
            ],
        }
    )

    with pytest.raises(CleanupError):
        cleanup.cleanup(
            observability_csm(enabled=False), AppliedSnapshot.from_resource(broken)
        )
    with pytest.raises(CleanupError):
        cleanup.remove_modules(broken, broken.enabled_modules())
    with pytest.raises(CleanupError):
        cleanup.remove_all(broken, None)
    assert dm.has_obj("Deployment", "karavi-topology", "karavi")
    dm.disable.assert_not_called()
