"""
Tests for the observability module
"""

# Local
from csm_operator.manifests.workloads import find_container, get_env
from csm_operator.test_helpers.helpers import make_csm, module_context


def observability_csm(components=None, driver_type="isilon"):
    return make_csm(
        driver_type=driver_type,
        modules=[
            {
                "name": "observability",
                "enabled": True,
                "components": components or [],
            }
        ],
    )


def object_keys(objects):
    return {(obj["kind"], obj["metadata"]["name"]) for obj in objects}


def test_all_components():
    """Every component is rendered into the karavi namespace"""
    module, ctx = module_context(observability_csm(), "observability")
    objects = module.standalone_objects(ctx)
    keys = object_keys(objects)
    assert ("Issuer", "selfsigned") in keys
    assert ("Deployment", "karavi-topology") in keys
    assert ("Certificate", "karavi-topology") in keys
    assert ("Deployment", "otel-collector") in keys
    assert ("Certificate", "otel-collector") in keys
    assert ("Deployment", "karavi-metrics-powerscale") in keys
    namespaces = {
        obj["metadata"].get("namespace")
        for obj in objects
        if obj["kind"] in ("Deployment", "Certificate", "Issuer")
    }
    assert namespaces == {"karavi"}


def test_metrics_follow_driver():
    module, ctx = module_context(
        observability_csm(driver_type="powerflex"), "observability"
    )
    keys = object_keys(module.standalone_objects(ctx))
    assert ("Deployment", "karavi-metrics-powerflex") in keys
    assert ("Deployment", "karavi-metrics-powerscale") not in keys


def test_component_disabled():
    """A disabled component renders none of its objects"""
    module, ctx = module_context(
        observability_csm([{"name": "topology", "enabled": False}]), "observability"
    )
    keys = object_keys(module.standalone_objects(ctx))
    assert ("Deployment", "karavi-topology") not in keys
    assert ("Certificate", "karavi-topology") not in keys
    assert ("Deployment", "otel-collector") in keys

    # The objects of every component remain known for cleanup
    assert "topology" in module.component_objects(ctx)


def test_component_overrides():
    module, ctx = module_context(
        observability_csm(
            [
                {
                    "name": "topology",
                    "image": "my/topology:1",
                    "envs": [{"name": "LOG_LEVEL", "value": "DEBUG"}],
                },
                {
                    "name": "metrics-powerscale",
                    "envs": [{"name": "COLLECTOR_ADDRESS", "value": "collector:1"}],
                },
            ]
        ),
        "observability",
    )
    objects = {
        (obj["kind"], obj["metadata"]["name"]): obj
        for obj in module.standalone_objects(ctx)
    }
    topology = find_container(
        objects[("Deployment", "karavi-topology")]["spec"]["template"]["spec"],
        "karavi-topology",
    )
    assert topology["image"] == "my/topology:1"
    assert get_env(topology, "TOPOLOGY_LOG_LEVEL") == "DEBUG"
    config_map = objects[("ConfigMap", "karavi-metrics-powerscale-configmap")]
    assert config_map["data"]["COLLECTOR_ADDR"] == "collector:1"
