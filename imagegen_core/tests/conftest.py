"""Shared fixtures: isolated settings, stores and sample graphs."""

import copy

import pytest

from imagegen_core.config import (
    GenerationConfig,
    LocalPipelineConfig,
    OpenAIConfig,
    PlatformConfig,
    RetryConfig,
    Settings,
    StorageConfig,
)
from imagegen_core.graph import WorkflowGraph
from imagegen_core.workflow_store import WorkflowStore

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 32

SCENARIO_GRAPH = {
    "3": {"class_type": "KSampler", "inputs": {"positive": ["5", 0], "steps": 20}},
    "5": {"class_type": "CLIPTextEncode", "inputs": {"text": "old"}},
}

TXT2IMG_GRAPH = {
    "4": {
        "class_type": "CheckpointLoaderSimple",
        "inputs": {"ckpt_name": "sdxl_base.safetensors"},
    },
    "5": {"class_type": "EmptyLatentImage", "inputs": {"width": 1024, "height": 1024, "batch_size": 1}},
    "6": {
        "class_type": "CLIPTextEncode",
        "inputs": {"text": "a cat", "clip": ["4", 1]},
        "_meta": {"title": "Positive"},
    },
    "7": {"class_type": "CLIPTextEncode", "inputs": {"text": "blurry", "clip": ["4", 1]}},
    "3": {
        "class_type": "KSampler",
        "inputs": {
            "seed": 42,
            "steps": 25,
            "cfg": 7.0,
            "sampler_name": "euler",
            "scheduler": "normal",
            "denoise": 1.0,
            "model": ["4", 0],
            "positive": ["6", 0],
            "negative": ["7", 0],
            "latent_image": ["5", 0],
        },
    },
    "8": {"class_type": "VAEDecode", "inputs": {"samples": ["3", 0], "vae": ["4", 2]}},
    "9": {"class_type": "SaveImage", "inputs": {"filename_prefix": "out", "images": ["8", 0]}},
}

IMG2IMG_GRAPH = {
    **copy.deepcopy(TXT2IMG_GRAPH),
    "10": {"class_type": "LoadImage", "inputs": {"image": "placeholder.png"}},
    "11": {"class_type": "LoadImage", "inputs": {"image": "placeholder2.png"}},
}


@pytest.fixture
def settings(tmp_path):
    """Settings with temp directories and fast timings."""
    return Settings(
        local=LocalPipelineConfig(url="http://pipeline.test:8188", poll_interval=0.01),
        platform=PlatformConfig(),
        openai=OpenAIConfig(),
        generation=GenerationConfig(deadline=2.0, progress_interval=15.0),
        storage=StorageConfig(
            workflows_dir=tmp_path / "workflows", output_dir=tmp_path / "outputs"
        ),
        retry=RetryConfig(max_retries=2, backoff_base=0.01, backoff_max=0.01, backoff_jitter=False),
    )


@pytest.fixture
def store(settings):
    return WorkflowStore(settings.storage.workflows_dir)


@pytest.fixture
def scenario_graph():
    return WorkflowGraph.from_dict(copy.deepcopy(SCENARIO_GRAPH))


@pytest.fixture
def txt2img_graph():
    return WorkflowGraph.from_dict(copy.deepcopy(TXT2IMG_GRAPH))


@pytest.fixture
def img2img_graph():
    return WorkflowGraph.from_dict(copy.deepcopy(IMG2IMG_GRAPH))
