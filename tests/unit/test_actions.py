"""
Unit Tests for Rule Variants
============================

Tests for object creation, property binding, stack linking and method
call rules, driven through real documents.
"""

import pytest

from digester.core.errors import DigesterParseError
from digester.core.rules.actions import (
    CallableCreationFactory, CallMethodRule, CallParamRule, FactoryCreateRule,
    ObjectCreateRule, ObjectParamRule, PathCallParamRule, SetPropertiesRule,
    SetRootRule
)

from tests.utils.assertions import assert_finished, find_log_events
from tests.utils.data_generators import (
    Config, Connector, Listener, SecureService, Service, ServiceFactory,
    XMLDataGenerator, create_connector
)
from tests.utils.mocks import RecordingRule


@pytest.fixture
def config_digester(digester):
    """Engine with the full sample configuration rules registered."""
    digester.add_object_create("config", Config)
    digester.add_set_properties("config")

    digester.add_object_create("config/service", Service, "className")
    digester.add_set_properties("config/service", excludes=["className"])
    digester.add_set_next("config/service", "add_service")
    digester.add_call_method("config/service/description", "set_description")

    digester.add_object_create("config/service/connector", Connector)
    digester.add_set_properties("config/service/connector")
    digester.add_set_next("config/service/connector", "add_connector")

    digester.add_call_method("config/service/alias", "add_alias")

    digester.add_call_method("config/property", "add_property", 2)
    digester.add_call_param("config/property", 0, "name")
    digester.add_call_param("config/property", 1, "value")
    return digester


class TestSampleScenarios:
    """Test end-to-end builds of small object graphs."""

    def test_config_service_scenario(self, digester):
        """Test a nested service picks up its name attribute."""
        digester.add_object_create("config", Config)
        digester.add_object_create("config/service", Service)
        digester.add_set_properties("config/service")
        digester.add_set_next("config/service", "add_service")

        root = digester.parse_string(XMLDataGenerator.generate_simple_config())

        assert isinstance(root, Config)
        assert len(root.services) == 1
        assert root.services[0].name == "x"

    def test_exact_match_shadows_wildcard(self, digester, events):
        """Test only the exact-match rule fires when a wildcard also matches."""
        digester.add_rule("*/item", RecordingRule("wildcard", events))
        digester.add_rule("list/item", RecordingRule("exact", events))

        digester.parse_string(XMLDataGenerator.generate_list_document())

        fired = [e for e in events if e[1] != "finish"]
        assert fired
        assert all(e[0] == "exact" for e in fired)

    def test_full_config(self, config_digester, full_config_xml):
        """Test the full sample document builds the expected graph."""
        config = config_digester.parse_string(full_config_xml)

        assert config.name == "main"
        assert config.version == 3
        assert config.properties == {"region": "eu-west"}

        web, db = config.services
        assert web.name == "web"
        assert web.port == 8080
        assert web.enabled is False
        assert web.description == "Front end"
        assert web.aliases == ["www", "web.local"]
        assert db.name == "db"
        assert db.port == 5432
        assert db.enabled is True

        https, ajp = web.connectors
        assert https.protocol == "https"
        assert https.port == 8443
        assert https.secure is True
        assert https.address == "0.0.0.0"
        assert https.max_threads == 200
        assert ajp == Connector(protocol="ajp")

        assert_finished(config_digester)


class TestObjectCreateRule:
    """Test ObjectCreateRule functionality."""

    def test_dotted_class_path(self, digester):
        """Test the class can be named by a dotted path."""
        digester.add_object_create("config", "tests.utils.data_generators.Config")
        assert isinstance(digester.parse_string("<config/>"), Config)

    def test_class_override_attribute(self, digester):
        """Test an attribute can name a different class."""
        digester.add_object_create("config", Config)
        digester.add_object_create("config/service", Service, "className")
        digester.add_set_next("config/service", "add_service")

        config = digester.parse_string(
            '<config><service className="tests.utils.data_generators:SecureService"/>'
            "<service/></config>"
        )

        assert [type(s) for s in config.services] == [SecureService, Service]

    def test_unknown_class_is_fatal(self, digester):
        """Test a class path that cannot be imported aborts the run."""
        digester.add_object_create("config", "tests.utils.data_generators.Missing")
        with pytest.raises(DigesterParseError, match="ImportError"):
            digester.parse_string("<config/>")

    def test_pops_on_close(self, digester):
        """Test the created object is popped when its element closes."""
        digester.add_object_create("a", Config)
        digester.add_object_create("a/b", Service)
        seen = []

        class Probe(RecordingRule):
            def end(self, namespace, name):
                seen.append(self.digester.get_count())

        digester.add_rule("a", Probe("probe", []))
        digester.parse_string("<a><b/></a>")

        # the probe's end runs before ObjectCreateRule pops the Config
        assert seen == [1]

    def test_repr(self):
        """Test rule representation names the class."""
        assert "Config" in repr(ObjectCreateRule(Config))


class TestFactoryCreateRule:
    """Test FactoryCreateRule functionality."""

    def test_factory_object(self, digester):
        """Test a factory's object is pushed and linked."""
        digester.add_object_create("config", Config)
        digester.add_factory_create("config/service", ServiceFactory())
        digester.add_set_next("config/service", "add_service")

        config = digester.parse_string('<config><service name="api"/></config>')

        assert config.services == [Service(name="api")]

    def test_factory_receives_digester(self, digester):
        """Test add_factory_create attaches the engine to the factory."""
        factory = ServiceFactory()
        digester.add_factory_create("service", factory)
        assert factory.digester is digester

    def test_callable_factory(self, digester):
        """Test a plain callable can act as a factory."""
        digester.add_rule("connector", FactoryCreateRule(CallableCreationFactory(create_connector)))
        connector = digester.parse_string('<connector protocol="ajp"/>')
        assert connector.protocol == "ajp"

    def test_factory_exception_is_fatal(self, digester):
        """Test factory failures abort the run by default."""
        digester.add_factory_create("service", ServiceFactory())
        with pytest.raises(DigesterParseError, match="broken service"):
            digester.parse_string('<service broken="true"/>')

    def test_ignored_factory_exception_skips_pop(self, digester):
        """Test an ignored failure pushes and pops nothing."""
        digester.add_object_create("config", Config)
        digester.add_factory_create("config/service", ServiceFactory(), ignore_create_exceptions=True)
        digester.add_set_next("config/service", "add_service")

        config = digester.parse_string(
            '<config><service name="ok"/><service broken="true"/></config>'
        )

        assert isinstance(config, Config)
        assert [s.name for s in config.services] == ["ok"]


class TestSetPropertiesRule:
    """Test SetPropertiesRule functionality."""

    def test_aliases_and_excludes(self, digester):
        """Test attribute aliases and exclusions."""
        digester.add_object_create("service", Service)
        digester.add_rule(
            "service", SetPropertiesRule(aliases={"id": "name"}, excludes=["port"])
        )

        service = digester.parse_string('<service id="alias" port="1"/>')

        assert service.name == "alias"
        assert service.port == 0

    def test_bindable_target(self, digester):
        """Test a Bindable object receives raw attribute values."""
        digester.add_object_create("listener", Listener)
        digester.add_set_properties("listener")

        listener = digester.parse_string('<listener className="x" level="3"/>')

        assert listener.values == {"className": "x", "level": "3"}

    def test_mapping_target(self, digester):
        """Test a dict on top of the stack receives attributes as items."""
        digester.add_object_create("props", dict)
        digester.add_set_properties("props")

        assert digester.parse_string('<props a="1" b="2"/>') == {"a": "1", "b": "2"}

    def test_no_target_is_ignored(self, digester):
        """Test properties are skipped when the stack is empty."""
        digester.add_set_properties("service")
        assert digester.parse_string('<service name="x"/>') is None

    def test_unknown_property_lenient(self, digester, log_output):
        """Test unknown properties are ignored silently by default."""
        digester.add_object_create("service", Service)
        digester.add_set_properties("service")

        service = digester.parse_string('<service bogus="1"/>')

        assert not hasattr(service, "bogus")
        assert not find_log_events(
            log_output, "[SetPropertiesRule] Setting property did not find a matching property"
        )

    def test_unknown_property_strict(self, strict_digester, log_output):
        """Test strict mode warns about unknown properties."""
        strict_digester.add_object_create("service", Service)
        strict_digester.add_set_properties("service")

        strict_digester.parse_string('<service bogus="1"/>')

        warnings = find_log_events(
            log_output, "[SetPropertiesRule] Setting property did not find a matching property",
            "warning",
        )
        assert [w["property"] for w in warnings] == ["bogus"]

    def test_unconvertible_value_lenient(self, digester):
        """Test a value that cannot be converted leaves the default in place."""
        digester.add_object_create("service", Service)
        digester.add_set_properties("service")

        service = digester.parse_string('<service name="web" port="abc"/>')

        assert service.name == "web"
        assert service.port == 0

    def test_unconvertible_value_strict(self, strict_digester, log_output):
        """Test strict mode warns about a value that cannot be converted."""
        strict_digester.add_object_create("connector", Connector)
        strict_digester.add_set_properties("connector")

        connector = strict_digester.parse_string('<connector port="abc" secure="true"/>')

        assert connector.port == 8080
        assert connector.secure is True
        warnings = find_log_events(
            log_output, "[SetPropertiesRule] Setting property did not find a matching property",
            "warning",
        )
        assert [w["property"] for w in warnings] == ["port"]

    def test_fake_attributes_not_reported(self, strict_digester, log_output):
        """Test attributes registered as fake are not reported in strict mode."""
        strict_digester.fake_attributes = {object: ["className"], Listener: ["x-debug"]}
        strict_digester.add_object_create("service", Service)
        strict_digester.add_set_properties("service")
        strict_digester.add_object_create("service/listener", Listener)
        strict_digester.add_set_properties("service/listener")

        strict_digester.parse_string(
            '<service className="x"><listener x-debug="1" x-other="2"/></service>'
        )

        warnings = find_log_events(
            log_output, "[SetPropertiesRule] Setting property did not find a matching property",
            "warning",
        )
        assert [w["property"] for w in warnings] == ["x-other"]

    def test_is_fake_attribute_lookup(self, digester):
        """Test exact type entries take precedence over the object fallback."""
        digester.fake_attributes = {object: ["className"], Listener: ["x-debug"]}

        assert digester.is_fake_attribute(Service(), "className")
        assert digester.is_fake_attribute(Listener(), "x-debug")
        assert not digester.is_fake_attribute(Listener(), "className")


class TestLinkRules:
    """Test SetNextRule, SetTopRule and SetRootRule."""

    def test_set_top(self, digester):
        """Test the child receives its parent."""
        digester.add_object_create("config", Config)
        digester.add_object_create("config/service", Service)
        digester.add_set_top("config/service", "attach")
        seen = []
        digester.add_set_next("config/service", "add_service")

        class Capture(RecordingRule):
            def end(self, namespace, name):
                seen.append(self.digester.peek())

        digester.add_rule("config/service", Capture("capture", []))
        config = digester.parse_string("<config><service/></config>")

        assert seen[0].parent is config

    def test_set_root(self, digester):
        """Test the root receives deeply nested objects."""
        digester.add_object_create("config", Config)
        digester.add_object_create("*/listener", Listener)
        digester.add_set_root("*/listener", "add_listener")

        config = digester.parse_string("<config><a><b><listener/></b></a><listener/></config>")

        assert len(config.listeners) == 2

    def test_set_next_without_parent_warns(self, digester, log_output):
        """Test linking with a missing parent is skipped with a warning."""
        digester.add_object_create("service", Service)
        digester.add_set_next("service", "add_service")

        assert isinstance(digester.parse_string("<service/>"), Service)
        assert find_log_events(log_output, "[SetNextRule] Call target is None, skipping", "warning")

    def test_missing_method_is_fatal(self, digester):
        """Test linking through an unknown method aborts the run."""
        digester.add_object_create("config", Config)
        digester.add_object_create("config/service", Service)
        digester.add_set_next("config/service", "add_missing")

        with pytest.raises(DigesterParseError, match="Config has no method 'add_missing'"):
            digester.parse_string("<config><service/></config>")

    def test_param_type_conversion(self, digester):
        """Test the linked object is converted when a param type is given."""
        digester.add_object_create("config", Config)
        digester.add_object_create("config/path", str)
        digester.add_set_next("config/path", "add_path", str)

        config = digester.parse_string("<config><path/></config>")

        assert config.paths == [""]

    def test_set_root_repr(self):
        """Test link rules describe their method."""
        assert repr(SetRootRule("add_listener")) == "SetRootRule[method_name=add_listener]"


class TestCallMethodRule:
    """Test CallMethodRule functionality."""

    def test_body_text_argument(self, digester):
        """Test the element body is the argument when no params are declared."""
        digester.add_object_create("service", Service)
        digester.add_call_method("service/alias", "add_alias")

        service = digester.parse_string("<service><alias> a </alias><alias>b</alias></service>")

        assert service.aliases == ["a", "b"]

    def test_zero_argument_call(self, digester):
        """Test an empty param type list makes a no-argument call."""
        digester.add_object_create("service", Service)
        digester.add_rule("service/mark", CallMethodRule("mark", 0, []))

        assert digester.parse_string("<service><mark/></service>").description == "marked"

    def test_typed_params_from_children(self, digester):
        """Test parameters are collected from child bodies and converted."""
        digester.add_object_create("service", Service)
        digester.add_call_method("service/timeout", "set_timeout", 2, [str, int])
        digester.add_call_param("service/timeout/kind", 0)
        digester.add_call_param("service/timeout/seconds", 1)

        service = digester.parse_string(
            "<service><timeout><kind>read</kind><seconds>30</seconds></timeout></service>"
        )

        assert service.timeouts == [("read", 30)]

    def test_single_missing_param_skips_call(self, digester):
        """Test a single expected parameter that never arrives skips the call."""
        digester.add_object_create("service", Service)
        digester.add_call_method("service/alias", "add_alias", 1)
        digester.add_call_param("service/alias", 0, "value")

        service = digester.parse_string('<service><alias/><alias value="x"/></service>')

        assert service.aliases == ["x"]

    def test_camel_case_method_name(self, digester):
        """Test Java-style method names are bound to snake_case methods."""
        digester.add_object_create("service", Service)
        digester.add_call_method("service/alias", "addAlias")

        assert digester.parse_string("<service><alias>a</alias></service>").aliases == ["a"]

    def test_target_offset(self, digester):
        """Test negative offsets address the bottom of the stack."""
        digester.add_object_create("config", Config)
        digester.add_object_create("config/service", Service)
        digester.add_rule("config/service/path", CallMethodRule("add_path", target_offset=-1))

        config = digester.parse_string("<config><service><path>/srv</path></service></config>")

        assert config.paths == ["/srv"]

    def test_missing_target_is_fatal(self, digester):
        """Test a call with nothing on the stack aborts the run."""
        digester.add_call_method("alias", "add_alias")

        with pytest.raises(DigesterParseError, match="Call target is null"):
            digester.parse_string("<alias>x</alias>")

    def test_bindable_invoke(self, digester):
        """Test calls on a Bindable go through invoke."""
        digester.add_object_create("listener", Listener)
        digester.add_call_method("listener/event", "on_event", 2)
        digester.add_call_param("listener/event", 0, "type")
        digester.add_object_param("listener/event", 1, 42)

        listener = digester.parse_string('<listener><event type="start"/></listener>')

        assert listener.calls == [("on_event", ["start", 42])]

    def test_process_result_hook(self, digester):
        """Test subclasses receive the method's return value."""
        results = []

        class ResultRule(CallMethodRule):
            def process_method_call_result(self, result):
                results.append(result)

        digester.add_object_create("listener", Listener)
        digester.add_rule("listener/ping", ResultRule("ping", 0, []))

        digester.parse_string("<listener><ping/><ping/></listener>")

        assert results == [1, 2]

    def test_repr(self):
        """Test rule representation lists parameter types."""
        rule = CallMethodRule("set_timeout", 2, [str, int])
        assert repr(rule) == (
            "CallMethodRule[method_name=set_timeout, param_count=2, param_types={str, int}]"
        )


class TestParamRules:
    """Test CallParamRule, ObjectParamRule and PathCallParamRule."""

    def test_param_from_stack_value(self, digester):
        """Test the stacked object reaches the method unchanged."""
        captured = []

        class Target:
            def attach(self, parent):
                captured.append(parent)

        digester.add_object_create("config", Config)
        digester.add_object_create("config/target", Target)
        digester.add_call_method("config/target", "attach", 1, [Config])
        digester.add_rule("config/target", CallParamRule(0, from_stack=True, stack_index=1))

        config = digester.parse_string("<config><target/></config>")

        assert captured == [config]

    def test_object_param_requires_attribute(self, digester):
        """Test an ObjectParamRule bound to an attribute fires only when it is present."""
        digester.add_object_create("config", Config)
        digester.add_call_method("config/property", "add_property", 2)
        digester.add_call_param("config/property", 0, "name")
        digester.add_rule("config/property", ObjectParamRule(1, "on", attribute_name="enabled"))

        config = digester.parse_string(
            '<config><property name="a" enabled="yes"/><property name="b"/></config>'
        )

        assert config.properties == {"a": "on", "b": None}

    def test_path_param(self, digester):
        """Test the current match path can be passed as a parameter."""
        digester.add_object_create("config", Config)
        digester.add_call_method("*/mount", "add_path", 1)
        digester.add_rule("*/mount", PathCallParamRule(0))

        config = digester.parse_string("<config><a><mount/></a><mount/></config>")

        assert config.paths == ["config/a/mount", "config/mount"]

    def test_nested_body_params(self, digester):
        """Test nested calls each collect their own parameters."""
        digester.add_object_create("config", Config)
        digester.add_call_method("*/entry", "add_property", 2)
        digester.add_call_param("*/entry/key", 0)
        digester.add_call_param("*/entry/value", 1)

        config = digester.parse_string(
            "<config>"
            "<entry><key>outer</key><entry><key>inner</key><value>2</value></entry>"
            "<value>1</value></entry>"
            "</config>"
        )

        assert config.properties == {"inner": "2", "outer": "1"}

    def test_param_without_call_is_ignored(self, digester, log_output):
        """Test a parameter rule with no enclosing call warns and does nothing."""
        digester.add_call_param("value", 0)
        assert digester.parse_string("<value>x</value>") is None
        assert find_log_events(log_output, "Empty params stack (returning None)", "warning")
