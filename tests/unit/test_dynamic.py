import os
import stat
from pathlib import Path

import pytest

from conftest import RecordingProcess
from service_dns.config import DynamicConfigData, InterfaceConfigData, ServiceConfigData
from service_dns.dynamic import DynamicInstance, DynamicPaths
from service_dns.dynamic.render import DDClientRenderer, resolve_provider
from service_dns.dynamic.rpc import update_interface
from service_dns.dynamic.state import HostState, map_status, read_state_data
from service_dns.errors import MustViolationError

CACHE = """\
## ddclient-3.8.3
## last updated at Thu Aug  2 16:44:49 2018 (1533228289)
atime=0,backupmx=0,custom=0,host=test.example.com,ip=10.156.55.202,mtime=1533158251,mx=,script=/nic/update,static=0,status=,warned-min-error-interval=0,warned-min-interval=0,wildcard=0,wtime=30 test.example.com
atime=0,backupmx=0,custom=0,host=test2.example.com,ip=10.156.55.202,mtime=1533158251,mx=,script=/nic/update,static=0,status=good,warned-min-error-interval=0,warned-min-interval=0,wildcard=0,wtime=30 test2.example.com
"""

ZERO_TIME_CACHE = """\
## ddclient-3.8.3
atime=0,backupmx=0,custom=0,host=test2.example.com,mtime=0,mx=,script=/nic/update,static=0,status=,warned-min-error-interval=0,warned-min-interval=0,wildcard=0,wtime=30 test2.example.com
"""


def _interface(name, host, **service):
    return InterfaceConfigData(
        name=name,
        services=(
            ServiceConfigData(
                name=service.pop("provider", "dyndns"),
                host_names=(host,),
                login="user",
                password="password",
                **service,
            ),
        ),
    )


def test_read_state_data():
    state = read_state_data(CACHE, "dp0s3")

    assert state.name == "dp0s3"
    assert state.hosts == [
        HostState("test.example.com", "nochange", "10.156.55.202", "2018-08-01T21:17:31Z"),
        HostState("test2.example.com", "successful", "10.156.55.202", "2018-08-01T21:17:31Z"),
    ]


def test_read_state_data_zero_time():
    state = read_state_data(ZERO_TIME_CACHE, "dp0s3")

    assert state.hosts == [HostState("test2.example.com", "nochange")]
    assert state.to_dict() == {
        "name": "dp0s3",
        "hosts": [{"hostname": "test2.example.com", "status": "nochange"}],
    }


@pytest.mark.parametrize(
    "word, expected",
    [
        ("good", "successful"),
        ("nochg", "nochange"),
        ("", "nochange"),
        ("noconnect", "noconnect"),
        ("failed", "failed"),
        ("badauth", "nochange"),
    ],
)
def test_map_status(word, expected):
    assert map_status(word) == expected


def test_resolve_provider_prefers_explicit_values():
    assert resolve_provider(ServiceConfigData("dyndns")) == ("dyndns2", "members.dyndns.org")
    assert resolve_provider(ServiceConfigData("zoneedit", server="dyn.example.net")) == (
        "zoneedit1",
        "dyn.example.net",
    )
    assert resolve_provider(ServiceConfigData("custom")) == (None, None)


def test_paths_for_default_and_named_instances(tmp_path: Path):
    default = DynamicPaths.for_instance("default", tmp_path)
    assert default.config_file("dp0s3") == Path("/etc/ddclient/ddclient_dp0s3.conf")
    assert default.unit("dp0s3") == "ddclient@dp0s3.service"

    blue = DynamicPaths.for_instance("blue", tmp_path)
    assert blue.config_file("dp0s3") == tmp_path / "blue" / "ddclient" / "config" / "ddclient_dp0s3.conf"
    assert blue.cache_file("dp0s3") == tmp_path / "blue" / "ddclient" / "cache" / "ddclient_dp0s3.cache"


def test_render_config(tmp_path: Path):
    paths = DynamicPaths.for_instance("blue", tmp_path)
    renderer = DDClientRenderer(paths)

    result = renderer.render(_interface("dp0s3", "test.example.com"))

    assert result.config_text.endswith(
        "daemon=300\n"
        "syslog=yes\n"
        f"pid={paths.pid_file('dp0s3')}\n"
        f"cache={paths.cache_file('dp0s3')}\n"
        "use=if, if=dp0s3\n"
        "\n"
        "# service dyndns\n"
        "protocol=dyndns2\n"
        "server=members.dyndns.org\n"
        "login=user\n"
        "password='password'\n"
        "test.example.com\n"
    )
    assert stat.S_IMODE(result.config_path.stat().st_mode) == 0o600
    assert f"DDCLIENT_CONF={result.config_path}\n" in result.env_path.read_text()
    assert paths.cache_dir.is_dir()


def test_config_is_private_from_creation(tmp_path: Path, monkeypatch):
    paths = DynamicPaths.for_instance("blue", tmp_path)
    paths.config_dir.mkdir(parents=True)
    stale = paths.config_file("dp0s3")
    stale.write_text("old\n")
    stale.chmod(0o644)
    modes = []
    real_open = os.open

    def recording_open(path, flags, mode=0o777, *args, **kwargs):
        if Path(path) == stale:
            modes.append(mode)
        return real_open(path, flags, mode, *args, **kwargs)

    monkeypatch.setattr(os, "open", recording_open)

    result = DDClientRenderer(paths).render(_interface("dp0s3", "test.example.com"))

    assert modes == [0o600]
    assert stat.S_IMODE(result.config_path.stat().st_mode) == 0o600
    assert "old" not in result.config_path.read_text()


class TestDynamicInstance:
    @pytest.fixture
    def processes(self):
        return {}

    @pytest.fixture
    def paths(self, tmp_path: Path):
        return DynamicPaths.for_instance("blue", tmp_path)

    @pytest.fixture
    def instance(self, paths, processes):
        def factory(unit):
            process = RecordingProcess()
            processes[unit] = process
            return process

        return DynamicInstance("blue", paths, factory)

    def test_each_interface_gets_its_own_unit(self, instance, processes, paths):
        conf = DynamicConfigData(
            interfaces=(
                _interface("dp0s3", "test.example.com"),
                _interface("dp0s9", "test2.example.com"),
            )
        )

        instance.set(conf)
        instance.set(conf)

        assert sorted(processes) == ["ddclient@dp0s3.service", "ddclient@dp0s9.service"]
        assert all(p.actions == ["reload"] for p in processes.values())
        assert paths.config_file("dp0s3").exists()
        assert paths.config_file("dp0s9").exists()

    def test_only_changed_interfaces_reload(self, instance, processes):
        dp0s3 = _interface("dp0s3", "test.example.com")
        instance.set(DynamicConfigData(interfaces=(dp0s3, _interface("dp0s9", "a.example.com"))))
        instance.set(DynamicConfigData(interfaces=(dp0s3, _interface("dp0s9", "b.example.com"))))

        assert processes["ddclient@dp0s3.service"].actions == ["reload"]
        assert processes["ddclient@dp0s9.service"].actions == ["reload", "reload"]

    def test_removed_interface_is_stopped_and_cleaned(self, instance, processes, paths):
        instance.set(
            DynamicConfigData(
                interfaces=(
                    _interface("dp0s3", "test.example.com"),
                    _interface("dp0s9", "test2.example.com"),
                )
            )
        )

        instance.set(DynamicConfigData(interfaces=(_interface("dp0s3", "test.example.com"),)))

        removed = processes["ddclient@dp0s9.service"]
        assert removed.closed
        assert removed.actions == ["reload", "stop"]
        assert not paths.config_file("dp0s9").exists()
        assert not paths.env_file("dp0s9").parent.exists()
        assert instance.process("dp0s9") is None
        assert list(instance.interfaces()) == ["dp0s3"]

    def test_clearing_stops_every_unit(self, instance, processes):
        instance.set(DynamicConfigData(interfaces=(_interface("dp0s3", "test.example.com"),)))

        instance.set(None)

        assert processes["ddclient@dp0s3.service"].closed
        assert instance.interfaces() == {}

    def test_state_reads_cache_files(self, instance, paths):
        instance.set(
            DynamicConfigData(
                interfaces=(
                    _interface("dp0s3", "test.example.com"),
                    _interface("dp0s9", "test2.example.com"),
                )
            )
        )
        paths.cache_file("dp0s3").write_text(CACHE)

        report = instance.state().to_dict()

        interfaces = report["status"]["interfaces"]
        assert [i["name"] for i in interfaces] == ["dp0s3", "dp0s9"]
        assert len(interfaces[0]["hosts"]) == 2
        assert interfaces[1]["hosts"] == []

    def test_update_interface_restarts_unit(self, instance, processes):
        instance.set(DynamicConfigData(interfaces=(_interface("dp0s3", "test.example.com"),)))

        update_interface(instance, "dp0s3")

        assert processes["ddclient@dp0s3.service"].actions == ["reload", "restart"]

    def test_update_unknown_interface(self, instance):
        with pytest.raises(MustViolationError) as excinfo:
            update_interface(instance, "dp0s7")

        assert excinfo.value.path == "/interface/dp0s7"

    def test_failed_stop_is_retried_on_next_pass(self, instance, processes):
        instance.set(DynamicConfigData(interfaces=(_interface("dp0s3", "test.example.com"),)))
        unit = processes["ddclient@dp0s3.service"]
        unit.failures["stop"] = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            instance.set(None)
        assert instance.process("dp0s3") is unit

        unit.failures.clear()
        instance.set(None)

        assert unit.actions == ["reload", "stop", "stop"]
        assert instance.process("dp0s3") is None
        assert instance.get() is None
