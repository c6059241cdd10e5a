"""Unit tests for domain models."""

from abc import ABC, abstractmethod
from collections import OrderedDict

import pytest
from pydantic import ValidationError

from managed_di.domain import (
    APPLICATION_SCOPE,
    SESSION_SCOPE,
    CircularDependencyError,
    ClassDescriptor,
    InstanceScope,
    InstanceType,
    MethodServices,
    ResolutionContext,
    ScopeContext,
    SecurityContext,
    ServiceMeta,
)
from managed_di.domain.models import import_type


class Greeter(ABC):
    @abstractmethod
    def greet(self) -> str:
        pass


class EnglishGreeter(Greeter):
    def greet(self) -> str:
        return "hello"


class TestImportType:
    """Test cases for import_type."""

    def test_colon_reference(self):
        """Test ``module:Name`` references."""
        assert import_type("collections:OrderedDict") is OrderedDict

    def test_dotted_reference(self):
        """Test ``module.Name`` references."""
        assert import_type("collections.OrderedDict") is OrderedDict

    def test_non_string_returned_unchanged(self):
        """Test that classes pass through."""
        assert import_type(OrderedDict) is OrderedDict

    def test_missing_module_raises(self):
        """Test that unknown modules are reported."""
        with pytest.raises(ValueError, match="Cannot import module"):
            import_type("no_such_module_here:Thing")

    def test_missing_attribute_raises(self):
        """Test that unknown attributes are reported."""
        with pytest.raises(ValueError, match="has no attribute"):
            import_type("collections:NoSuchThing")

    def test_non_class_raises(self):
        """Test that references must name classes."""
        with pytest.raises(ValueError, match="does not name a class"):
            import_type("os.path:join")

    def test_invalid_reference_raises(self):
        """Test that a bare name is rejected."""
        with pytest.raises(ValueError, match="Invalid type reference"):
            import_type("OrderedDict")


class TestInstanceScope:
    """Test cases for InstanceScope."""

    def test_name_is_normalized(self):
        """Test that scope names are case insensitive."""
        assert InstanceScope(name=" Session ") == SESSION_SCOPE

    def test_scopes_are_hashable(self):
        """Test that scopes can key dictionaries."""
        scopes = {APPLICATION_SCOPE: "app"}
        assert scopes[InstanceScope(name="application")] == "app"

    def test_empty_name_rejected(self):
        """Test that a scope needs a name."""
        with pytest.raises(ValidationError):
            InstanceScope(name="")

    def test_str(self):
        """Test string conversion."""
        assert str(APPLICATION_SCOPE) == "application"


class TestClassDescriptor:
    """Test cases for ClassDescriptor."""

    def test_defaults(self):
        """Test descriptor default values."""
        descriptor = ClassDescriptor(name="greeter", implementation_type=EnglishGreeter)

        assert descriptor.interface_type is None
        assert descriptor.instance_type is InstanceType.DIRECT
        assert descriptor.instance_scope == APPLICATION_SCOPE
        assert descriptor.remote_url is None
        assert descriptor.config is None
        assert descriptor.static_config == {}

    def test_lookup_type_prefers_interface(self):
        """Test that the interface is the lookup type when declared."""
        descriptor = ClassDescriptor(name="greeter", interface_type=Greeter, implementation_type=EnglishGreeter)
        assert descriptor.lookup_type is Greeter

    def test_lookup_type_falls_back_to_implementation(self):
        """Test lookup type of implementation only descriptors."""
        descriptor = ClassDescriptor(name="greeter", implementation_type=EnglishGreeter)
        assert descriptor.lookup_type is EnglishGreeter

    def test_configuration_file_aliases(self):
        """Test that configuration file keys are accepted."""
        descriptor = ClassDescriptor.model_validate(
            {
                "name": "dict",
                "interface": "collections.abc:MutableMapping",
                "class": "collections:OrderedDict",
                "type": "Intercepted",
                "scope": "Thread",
            }
        )

        assert descriptor.implementation_type is OrderedDict
        assert descriptor.instance_type is InstanceType.INTERCEPTED
        assert descriptor.instance_scope == InstanceScope(name="thread")

    def test_remote_url_alias(self):
        """Test the ``url`` key."""
        descriptor = ClassDescriptor.model_validate(
            {"name": "remote", "interface": Greeter, "type": "remote", "url": "http://host/app"}
        )
        assert descriptor.remote_url == "http://host/app"

    def test_invalid_type_reference_rejected(self):
        """Test that bad import strings fail validation."""
        with pytest.raises(ValidationError):
            ClassDescriptor(name="broken", implementation_type="no_such_module_here:Thing")

    def test_invalid_instance_type_rejected(self):
        """Test that unknown instance types fail validation."""
        with pytest.raises(ValidationError):
            ClassDescriptor(name="broken", implementation_type=EnglishGreeter, instance_type="pooled")

    def test_descriptor_is_frozen(self):
        """Test immutability."""
        descriptor = ClassDescriptor(name="greeter", implementation_type=EnglishGreeter)
        with pytest.raises(ValidationError):
            descriptor.name = "other"


class TestServiceMeta:
    """Test cases for ServiceMeta."""

    def test_defaults_are_unset(self):
        """Test that nothing is declared by default."""
        meta = ServiceMeta()
        assert all(getattr(meta, name) is None for name in ServiceMeta.model_fields)

    def test_merge_returns_copy(self):
        """Test that merge does not modify the original."""
        meta = ServiceMeta()
        merged = meta.merge(remote=True)

        assert merged.remote is True
        assert meta.remote is None


class TestMethodServices:
    """Test cases for MethodServices."""

    def test_plain_method_is_not_managed(self):
        """Test that no service means no managed method."""
        assert MethodServices().managed is False

    @pytest.mark.parametrize(
        "services",
        [
            {"remote": True},
            {"transactional": True},
            {"asynchronous": True},
            {"cron": "0 0 * * *"},
            {"interceptor": object},
        ],
    )
    def test_any_service_makes_method_managed(self, services):
        """Test that each service requires a managed method."""
        assert MethodServices(**services).managed is True


class TestSecurityContext:
    """Test cases for SecurityContext."""

    def test_anonymous_by_default(self):
        """Test default security state."""
        security = SecurityContext()
        assert security.authenticated is False
        assert security.roles == frozenset()

    def test_has_any_role(self):
        """Test role matching."""
        security = SecurityContext(authenticated=True, roles=frozenset({"admin", "user"}))

        assert security.has_any_role(frozenset({"admin"}))
        assert not security.has_any_role(frozenset({"auditor"}))


class TestScopeContext:
    """Test cases for ScopeContext."""

    def test_defaults(self):
        """Test the context of an anonymous caller on the current thread."""
        scope_context = ScopeContext()

        assert scope_context.session_id is None
        assert scope_context.thread_id is None
        assert scope_context.attributes == {}
        assert not scope_context.security.authenticated

    def test_frozen(self):
        """Test that contexts cannot be changed once bound."""
        with pytest.raises(ValidationError):
            ScopeContext().session_id = "alice"


class TestResolutionContext:
    """Test cases for ResolutionContext."""

    def test_push_and_pop(self):
        """Test stack operations."""
        context = ResolutionContext()

        context.push(str)
        context.push(int)
        assert context.stack == [str, int]

        context.pop()
        assert context.stack == [str]

    def test_push_duplicate_raises_with_cycle(self):
        """Test that the cycle starts at the repeated type."""
        context = ResolutionContext()
        context.push(bytes)
        context.push(str)
        context.push(int)

        with pytest.raises(CircularDependencyError) as exc_info:
            context.push(str)

        assert exc_info.value.dependency_chain == [str, int, str]

    def test_pop_empty_is_noop(self):
        """Test popping an empty stack."""
        context = ResolutionContext()
        context.pop()
        assert context.is_empty()

    def test_clear(self):
        """Test clearing the stack."""
        context = ResolutionContext()
        context.push(str)
        context.clear()
        assert context.is_empty()
