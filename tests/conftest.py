"""Shared sample inputs for the test suite."""

import json
import textwrap
from pathlib import Path

import pytest

COVERAGE_XML = """\
    <?xml version="1.0" encoding="utf-8"?>
    <CoverageSession>
      <Modules>
        <Module>
          <Summary sequenceCoverage="80" branchCoverage="50" numBranchPoints="4"
                   maxCyclomaticComplexity="3" />
          <ModuleName>MyApp.Core</ModuleName>
          <Files>
            <File uid="1" fullPath="C:\\src\\MyApp.Core\\Calculator.cs" />
          </Files>
          <Classes>
            <Class>
              <Summary sequenceCoverage="72.5" branchCoverage="50" numBranchPoints="2" />
              <FullName>MyApp.Core.Calculator</FullName>
              <Methods>
                <Method sequenceCoverage="72.5" branchCoverage="50" cyclomaticComplexity="3"
                        nPathComplexity="4">
                  <Name>System.Int32 MyApp.Core.Calculator::Add(System.Int32,System.Int32)</Name>
                  <FileRef uid="1" />
                  <SequencePoints>
                    <SequencePoint sl="10" el="10" />
                    <SequencePoint sl="11" el="14" />
                  </SequencePoints>
                  <BranchPoints>
                    <BranchPoint sl="11" />
                  </BranchPoints>
                </Method>
                <Method sequenceCoverage="100" cyclomaticComplexity="1" isGetter="true">
                  <Name>System.Int32 MyApp.Core.Calculator::get_Total()</Name>
                  <FileRef uid="1" />
                  <SequencePoints>
                    <SequencePoint sl="20" el="20" />
                  </SequencePoints>
                  <BranchPoints />
                </Method>
              </Methods>
            </Class>
            <Class>
              <FullName>MyApp.Core.Calculator/&lt;&gt;c__DisplayClass0_0</FullName>
              <Methods />
            </Class>
          </Classes>
        </Module>
      </Modules>
    </CoverageSession>
    """

ROSLYN_XML = """\
    <?xml version="1.0" encoding="utf-8"?>
    <CodeMetricsReport Version="1.0">
      <Targets>
        <Target Name="MySolution.sln">
          <Assembly Name="MyApp.Core, Version=1.0.0.0, Culture=neutral, PublicKeyToken=null">
            <Metrics>
              <Metric Name="MaintainabilityIndex" Value="85" />
              <Metric Name="CyclomaticComplexity" Value="12" />
            </Metrics>
            <Namespaces>
              <Namespace Name="MyApp.Core">
                <Metrics>
                  <Metric Name="MaintainabilityIndex" Value="85" />
                </Metrics>
                <Types>
                  <NamedType Name="Calculator" File="C:\\src\\MyApp.Core\\Calculator.cs" Line="5">
                    <Metrics>
                      <Metric Name="MaintainabilityIndex" Value="80" />
                      <Metric Name="CyclomaticComplexity" Value="12" />
                      <Metric Name="ClassCoupling" Value="90" />
                    </Metrics>
                    <Members>
                      <Method Name="int Calculator.Add(int a, int b)"
                              File="C:\\src\\MyApp.Core\\Calculator.cs" Line="10">
                        <Metrics>
                          <Metric Name="MaintainabilityIndex" Value="70" />
                          <Metric Name="CyclomaticComplexity" Value="12" />
                          <Metric Name="ClassCoupling" Value="90" />
                          <Metric Name="SourceLines" Value="5" />
                        </Metrics>
                      </Method>
                      <Method Name="Calculator.Calculator()"
                              File="C:\\src\\MyApp.Core\\Calculator.cs" Line="7">
                        <Metrics>
                          <Metric Name="CyclomaticComplexity" Value="1" />
                        </Metrics>
                      </Method>
                    </Members>
                  </NamedType>
                </Types>
              </Namespace>
            </Namespaces>
          </Assembly>
        </Target>
      </Targets>
    </CodeMetricsReport>
    """


STATE_MACHINE_XML = """\
    <CoverageSession>
      <Modules>
        <Module>
          <ModuleName>MyApp</ModuleName>
          <Files>
            <File uid="1" fullPath="C:\\src\\MyApp\\Svc.cs" />
          </Files>
          <Classes>
            <Class>
              <FullName>MyApp.Svc</FullName>
              <Methods>
                <Method sequenceCoverage="0" cyclomaticComplexity="1">
                  <Name>System.Threading.Tasks.Task MyApp.Svc::RunAsync()</Name>
                  <FileRef uid="1" />
                  <SequencePoints>
                    <SequencePoint sl="8" el="8" />
                  </SequencePoints>
                </Method>
              </Methods>
            </Class>
            <Class>
              <FullName>MyApp.Svc/&lt;RunAsync&gt;d__3</FullName>
              <Methods>
                <Method sequenceCoverage="100" cyclomaticComplexity="4">
                  <Name>System.Void MyApp.Svc/&lt;RunAsync&gt;d__3::MoveNext()</Name>
                  <FileRef uid="1" />
                  <SequencePoints>
                    <SequencePoint sl="9" el="15" />
                  </SequencePoints>
                </Method>
              </Methods>
            </Class>
            <Class>
              <FullName>MyApp.Svc/&lt;&gt;c__DisplayClass0_0</FullName>
              <Methods />
            </Class>
          </Classes>
        </Module>
      </Modules>
    </CoverageSession>
    """


def sarif_log(*results: dict, rules: list[dict] | None = None) -> dict:
    return {
        "version": "2.1.0",
        "runs": [{
            "tool": {"driver": {"name": "Microsoft.CodeAnalysis", "rules": rules or []}},
            "results": list(results),
        }],
    }


def sarif_result(rule_id: str, line: int, uri: str = "file:///C:/src/MyApp.Core/Calculator.cs",
                 message: str = "finding") -> dict:
    return {
        "ruleId": rule_id,
        "message": {"text": message},
        "locations": [{
            "physicalLocation": {
                "artifactLocation": {"uri": uri},
                "region": {"startLine": line},
            },
        }],
    }


def write_text(path: Path, content: str) -> Path:
    path.write_text(textwrap.dedent(content), encoding="utf-8")
    return path


def write_json(path: Path, data: dict) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def coverage_file(tmp_path) -> Path:
    return write_text(tmp_path / "coverage.xml", COVERAGE_XML)


@pytest.fixture
def roslyn_file(tmp_path) -> Path:
    return write_text(tmp_path / "metrics.xml", ROSLYN_XML)


@pytest.fixture
def sarif_file(tmp_path) -> Path:
    return write_json(tmp_path / "analyzers.sarif", sarif_log(
        sarif_result("CA1506", 11, message="Coupled with 90 types"),
        sarif_result("CA1506", 12, message="Coupled again"),
        sarif_result("IDE0051", 20, message="Unused member"),
        rules=[{"id": "CA1506", "shortDescription": {"text": "Avoid excessive class coupling"}}],
    ))
