"""
Tests for the template loader and the template text helpers
"""

# Third Party
import pytest

# Local
from csm_operator import constants
from csm_operator.exceptions import ConfigError, ConfigNotFoundError
from csm_operator.manifests.loader import (
    TemplateLoader,
    modify_common,
    replace_all,
    split_documents,
)
from csm_operator.operator_config import OperatorConfig
from csm_operator.resource import ContainerTemplate


@pytest.fixture
def loader():
    return TemplateLoader(OperatorConfig())


def test_versions(loader):
    assert loader.versions(constants.DRIVER_CONFIG_DIR, "powerscale") == [
        "v2.10.0",
        "v2.9.0",
    ]
    assert loader.versions(constants.DRIVER_CONFIG_DIR, "nope") == []
    assert loader.exists(
        constants.DRIVER_CONFIG_DIR, "powerscale", "v2.10.0", "controller.yaml"
    )


def test_read_missing(loader):
    with pytest.raises(ConfigNotFoundError):
        loader.read(constants.DRIVER_CONFIG_DIR, "powerscale", "v0.0.1", "x.yaml")


@pytest.mark.parametrize(
    ["k8s_version", "attacher"],
    [
        ("1.28", "registry.k8s.io/sig-storage/csi-attacher:v4.4.0"),
        ("1.29", "registry.k8s.io/sig-storage/csi-attacher:v4.5.0"),
    ],
)
def test_sidecar_images(k8s_version, attacher):
    loader = TemplateLoader(OperatorConfig(k8s_version=k8s_version))
    assert loader.sidecar_images()["attacher"] == attacher


def test_sidecar_images_unsupported_k8s():
    loader = TemplateLoader(OperatorConfig(k8s_version="1.12"))
    with pytest.raises(ConfigNotFoundError):
        loader.sidecar_images()


def test_custom_config_directory(tmp_path):
    """The tree may be moved with the config directory"""
    version_dir = tmp_path / constants.DRIVER_CONFIG_DIR / "unity" / "v9.0.0"
    version_dir.mkdir(parents=True)
    (version_dir / "csidriver.yaml").write_text("kind: CSIDriver\n")
    loader = TemplateLoader(OperatorConfig(config_directory=str(tmp_path)))
    assert loader.versions(constants.DRIVER_CONFIG_DIR, "unity") == ["v9.0.0"]
    assert loader.read_yaml(
        constants.DRIVER_CONFIG_DIR, "unity", "v9.0.0", "csidriver.yaml"
    ) == {"kind": "CSIDriver"}


def test_split_documents():
    docs = split_documents("kind: A\n---\n---\nkind: B\n")
    assert [doc["kind"] for doc in docs] == ["A", "B"]


def test_split_documents_bad_content():
    with pytest.raises(ConfigError):
        split_documents("kind: A\n---\n- not an object\n")
    with pytest.raises(ConfigNotFoundError):
        split_documents("kind: [unclosed\n")


def test_modify_common():
    """Release placeholders, pull policy and kubelet dir are replaced"""
    content = (
        f"name: {constants.RELEASE_NAME_PLACEHOLDER}-node\n"
        f"namespace: {constants.RELEASE_NAMESPACE_PLACEHOLDER}\n"
        f"imagePullPolicy: {constants.DEFAULT_IMAGE_PULL_POLICY}\n"
        f"path: {constants.KUBELET_CONFIG_DIR_PLACEHOLDER}/plugins\n"
    )
    assert modify_common(content, "isilon", "csm") == (
        "name: isilon-node\n"
        "namespace: csm\n"
        "imagePullPolicy: IfNotPresent\n"
        "path: /var/lib/kubelet/plugins\n"
    )
    common = ContainerTemplate(
        image_pull_policy="Always",
        envs=[{"name": constants.KUBELET_CONFIG_DIR_ENV, "value": "/kubelet"}],
    )
    result = modify_common(content, "isilon", "csm", common)
    assert "imagePullPolicy: Always" in result
    assert "path: /kubelet/plugins" in result


def test_replace_all():
    assert replace_all("<A> and <B>", {"<A>": "1", "<B>": "2"}) == "1 and 2"
