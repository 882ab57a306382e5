"""
Container values handed to the digest comparison, and the Docker adapter
that builds them from running containers.
"""
import dataclasses
import logging
from typing import Optional, Tuple

import docker
import docker.errors

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class ImageInfo:
    repo_digests: Tuple[str, ...] = ()


@dataclasses.dataclass(frozen=True)
class Container:
    name: str
    image_name: str
    image_info: Optional[ImageInfo] = None

    @property
    def has_image_info(self):
        return self.image_info is not None


def from_docker(docker_container):
    """
    Build a Container from a docker SDK Container object.

    The image name is the one the container was created from; image info is
    left out when the local image is gone.
    """
    attrs = docker_container.attrs
    image_name = attrs.get("Config", {}).get("Image") or attrs.get("Image", "")

    image_info = None
    try:
        image = docker_container.image
    except docker.errors.ImageNotFound:
        logger.debug(f"Image of container {docker_container.name} not found locally")
        image = None
    if image is not None:
        image_info = ImageInfo(tuple(image.attrs.get("RepoDigests") or ()))

    return Container(
        name=docker_container.name, image_name=image_name, image_info=image_info
    )


def get_container(name, client=None):
    """
    Look up a container by name or id through the local Docker daemon
    """
    if client is None:
        client = docker.from_env()
    return from_docker(client.containers.get(name))
