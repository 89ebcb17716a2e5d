"""Container image mirroring into a private ECR repository."""

import json
from typing import Any, Dict, Optional, Tuple

from provisioner.core.config import Settings
from provisioner.core.exceptions import ProviderCommandError
from provisioner.core.logging import get_provider_logger
from provisioner.providers.aws import aws_handlers, ignore_not_found
from provisioner.providers.base import ProviderRegistry, ResourceHandler
from provisioner.providers.cli import AwsCli, DockerCli
from provisioner.providers.local import RandomPasswordHandler

logger = get_provider_logger("docker")


def split_repository_url(repository_url: str) -> Tuple[str, str]:
    """Split ``<registry>/<repository>`` into its two parts."""
    registry, _, repository = repository_url.partition("/")
    if not repository:
        raise ValueError(f"'{repository_url}' is not a registry repository URL")
    return registry, repository


class RegistryImageHandler(ResourceHandler):
    """Pull a public image and push it to an ECR repository.

    The pushed image is addressed by digest, so a task definition built
    from ``image_uri`` always runs exactly the mirrored image.
    """

    kind = "docker_registry_image"
    required = frozenset({"source_image", "repository_url"})
    supports_update = False

    def __init__(self, aws: AwsCli, docker: DockerCli):
        self.aws = aws
        self.docker = docker

    def _image_detail(self, repository: str, image_id: str) -> Optional[Dict[str, Any]]:
        response = ignore_not_found(
            lambda: self.aws.call(
                "ecr", "describe-images",
                "--repository-name", repository, "--image-ids", image_id,
            )
        )
        if not response or not response.get("imageDetails"):
            return None
        return response["imageDetails"][0]

    @staticmethod
    def _attributes(repository_url: str, tag: str, digest: str) -> Dict[str, Any]:
        image_uri = f"{repository_url}@{digest}"
        return {
            "id": image_uri,
            "image_uri": image_uri,
            "tagged_uri": f"{repository_url}:{tag}",
            "digest": digest,
            "repository_url": repository_url,
            "tag": tag,
        }

    def read(self, resource_id, attributes):
        repository_url, _, digest = resource_id.partition("@")
        _, repository = split_repository_url(repository_url)
        detail = self._image_detail(repository, f"imageDigest={digest}")
        if detail is None:
            return None
        return {**attributes, "digest": detail["imageDigest"]}

    def login(self, registry: str) -> None:
        password = self.aws.run(["ecr", "get-login-password"])
        self.docker.run(
            ["login", "--username", "AWS", "--password-stdin", registry],
            input_text=password,
        )

    def create(self, inputs):
        repository_url = inputs["repository_url"]
        tag = inputs.get("tag") or "latest"
        registry, repository = split_repository_url(repository_url)
        target = f"{repository_url}:{tag}"

        logger.info("Mirroring image", source=inputs["source_image"], target=target)
        self.login(registry)
        self.docker.run(["pull", inputs["source_image"]])
        self.docker.run(["tag", inputs["source_image"], target])
        self.docker.run(["push", target])

        detail = self._image_detail(repository, f"imageTag={tag}")
        if detail is None:
            raise ProviderCommandError(
                f"Pushed image {target} is not visible in the registry",
                tool="aws",
                details={"repository": repository, "tag": tag},
            )
        attributes = self._attributes(repository_url, tag, detail["imageDigest"])
        return attributes["id"], attributes

    def delete(self, resource_id, attributes):
        repository_url, _, digest = resource_id.partition("@")
        _, repository = split_repository_url(repository_url)
        ignore_not_found(
            lambda: self.aws.call(
                "ecr", "batch-delete-image",
                "--repository-name", repository,
                "--image-ids", json.dumps([{"imageDigest": digest}]),
            )
        )


def build_registry(config: Settings) -> ProviderRegistry:
    """Registry with every handler the SonarQube stack needs."""
    aws = AwsCli(config.AWS_CLI, region=config.AWS_REGION)
    docker = DockerCli(config.DOCKER_CLI)
    return ProviderRegistry(
        [
            RandomPasswordHandler(),
            RegistryImageHandler(aws, docker),
            *aws_handlers(aws),
        ]
    )
