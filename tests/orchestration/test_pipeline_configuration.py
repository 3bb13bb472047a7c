import pytest

from resource_flow.orchestration import ConvertBody, Deliver, Filter, Invoke, PipelineConfig, Split
from resource_flow.utils.errors import PipelineConfigError

PIPELINES_YAML = """
version: "1"
namespaces:
  dc: http://purl.org/dc/elements/1.1/
pipelines:
  - name: title
    stages:
      - kind: invoke
        options: {endpoint: fcrepo}
      - kind: convert_body
        options: {target: xml}
      - kind: filter
        name: containers
        options:
          xpath: "/rdf:RDF/rdf:Description/rdf:type[@rdf:resource='http://fedora.info/definitions/v4/repository#Container']"
      - kind: deliver
        options: {endpoint: "capture:filter"}
      - kind: split
        options: {xpath: "/rdf:RDF/rdf:Description/dc:title/text()"}
      - kind: deliver
        options: {endpoint: "capture:title"}
  - name: create
    stages:
      - kind: invoke
        options: {endpoint: fcrepo}
      - kind: deliver
        options: {endpoint: "capture:created"}
"""


def test_pipeline_config_builds_pipelines_from_yaml():
    config = PipelineConfig.from_yaml(text=PIPELINES_YAML)
    title, create = config.build()

    assert title.name == "title"
    assert [type(stage) for stage in title.stages] == [Invoke, ConvertBody, Filter, Deliver, Split, Deliver]
    assert title.stages[2].name == "containers"
    assert title.stages[4].query.namespaces["dc"] == "http://purl.org/dc/elements/1.1/"
    assert create.stages == (Invoke(endpoint="fcrepo"), Deliver(endpoint="capture:created"))


def test_pipeline_config_reads_files(tmp_path):
    path = tmp_path / "pipelines.yaml"
    path.write_text(PIPELINES_YAML)
    assert [definition.name for definition in PipelineConfig.from_yaml(path).pipelines] == ["title", "create"]


def test_duplicate_stage_names_are_rejected():
    text = """
pipelines:
  - name: dup
    stages:
      - {kind: set_header, name: a, options: {key: k, value: 1}}
      - {kind: set_header, name: a, options: {key: k, value: 2}}
"""
    with pytest.raises(PipelineConfigError):
        PipelineConfig.from_yaml(text=text)


def test_duplicate_pipeline_names_are_rejected():
    text = """
pipelines:
  - {name: same, stages: []}
  - {name: same, stages: []}
"""
    with pytest.raises(PipelineConfigError):
        PipelineConfig.from_yaml(text=text)


def test_missing_file_is_a_config_error(tmp_path):
    with pytest.raises(PipelineConfigError):
        PipelineConfig.from_yaml(tmp_path / "absent.yaml")


def test_path_or_text_is_required():
    with pytest.raises(PipelineConfigError):
        PipelineConfig.from_yaml()
