"""Application layer - Managed methods and their invocation processors chain."""

import inspect
from typing import TYPE_CHECKING, Any, Callable, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple

from managed_di.application.metadata_scanner import is_protocol, safe_type_hints
from managed_di.application.proxies import unwrap_proxy
from managed_di.domain import (
    BugError,
    DIException,
    IInvocationProcessorsChain,
    IMethodInvocationProcessor,
    InvalidArgumentsError,
    InvocationError,
    InvocationPriority,
    MethodInvocation,
    MethodServices,
)

if TYPE_CHECKING:
    from managed_di.application.managed_class import ManagedClass

# PEP 484 numeric tower
_PROMOTIONS: Dict[type, Tuple[type, ...]] = {
    float: (int,),
    complex: (int, float),
}


def _type_name(value: Any) -> str:
    if isinstance(value, type):
        return value.__name__
    return str(value).replace("typing.", "")


class MethodInvocationProcessorsChain(IInvocationProcessorsChain):
    """Iterator over the processors of a single invocation.

    A fresh chain is created for every call so concurrent invocations of the
    same managed method never share iteration state.
    """

    def __init__(self, processors: Iterable[IMethodInvocationProcessor]) -> None:
        self._processors: Iterator[IMethodInvocationProcessor] = iter(processors)

    def invoke_next_processor(self, invocation: MethodInvocation) -> Any:
        try:
            processor = next(self._processors)
        except StopIteration:
            raise BugError(f"Invocation processors chain exhausted for {invocation.method}.") from None
        return processor.on_method_invocation(self, invocation)


class ManagedMethod(IMethodInvocationProcessor):
    """A managed class method with declarative services.

    Holds the services resolved for the method and the priority sorted list
    of invocation processors applicable to it. The managed method itself is
    the last processor of its chain: it validates the arguments and executes
    the real function.

    Attributes:
        declaring_class: Managed class owning the method.
        function: The plain function declared by the implementation.
        services: Resolved declarative services.
    """

    def __init__(
        self,
        declaring_class: "ManagedClass",
        function: Callable,
        services: MethodServices,
        processors: Iterable[IMethodInvocationProcessor] = (),
    ) -> None:
        self.declaring_class = declaring_class
        self.function = function
        self.services = services
        self._signature = inspect.signature(function)
        self._type_hints = safe_type_hints(function)
        self._humanized = self._humanize()

        applicable = [processor for processor in processors if processor.is_applicable(self)]
        applicable.sort(key=lambda processor: processor.priority)
        self._processors: Tuple[IMethodInvocationProcessor, ...] = tuple(applicable) + (self,)

    def _humanize(self) -> str:
        implementation = self.declaring_class.implementation_type or self.declaring_class.interface_type
        parameters = ",".join(_type_name(parameter_type) for parameter_type in self.get_parameter_types())
        return f"{implementation.__module__}.{implementation.__qualname__}#{self.name}({parameters})"

    @property
    def name(self) -> str:
        return self.function.__name__

    @property
    def signature(self) -> str:
        """Humanized signature, e.g. ``app.services.UserService#save(User)``."""
        return self._humanized

    @property
    def processors(self) -> Tuple[IMethodInvocationProcessor, ...]:
        return self._processors

    @property
    def priority(self) -> InvocationPriority:
        return InvocationPriority.METHOD

    def get_parameter_types(self) -> List[Any]:
        parameters = list(self._signature.parameters.values())[1:]
        return [self._type_hints.get(parameter.name, Any) for parameter in parameters]

    def get_return_type(self) -> Optional[Any]:
        return self._type_hints.get("return")

    def is_void(self) -> bool:
        return self.get_return_type() in (None, type(None))

    def is_remotely_accessible(self) -> bool:
        return self.services.remote

    def is_public(self) -> bool:
        return self.services.public

    def is_transactional(self) -> bool:
        return self.services.transactional

    def get_transaction_schema(self) -> Optional[str]:
        return self.services.schema_name

    def is_immutable(self) -> bool:
        return self.services.immutable

    def is_asynchronous(self) -> bool:
        return self.services.asynchronous

    def get_cron_expression(self) -> Optional[str]:
        return self.services.cron

    def get_roles(self) -> FrozenSet[str]:
        return self.services.roles

    def get_interceptor_type(self) -> Optional[type]:
        return self.services.interceptor

    def is_applicable(self, managed_method: Any) -> bool:
        return managed_method is self

    def invoke(self, instance: Any, *args: Any, **kwargs: Any) -> Any:
        """Run the invocation processors chain for a call on the given instance.

        Args:
            instance: Managed instance, raw or proxied.
            *args: Positional arguments.
            **kwargs: Keyword arguments.

        Returns:
            The value returned by the chain, None for asynchronous methods.

        Raises:
            InvocationError: Wraps any exception thrown by the function or a processor.
            AuthorizationError: If the security gate rejects the call.
            InvalidArgumentsError: If the arguments do not match the signature.
        """
        invocation = MethodInvocation(
            method=self,
            instance=unwrap_proxy(instance),
            args=args,
            kwargs=kwargs,
            scope_context=self.declaring_class.container.current_scope_context(),
        )
        chain = MethodInvocationProcessorsChain(self._processors)
        try:
            return chain.invoke_next_processor(invocation)
        except DIException:
            raise
        except Exception as e:
            raise InvocationError(e) from e

    def on_method_invocation(self, chain: IInvocationProcessorsChain, invocation: MethodInvocation) -> Any:
        self._validate_arguments(invocation)
        try:
            return self.function(invocation.instance, *invocation.args, **invocation.kwargs)
        except Exception as e:
            raise InvocationError(e) from e

    def _validate_arguments(self, invocation: MethodInvocation) -> None:
        try:
            bound = self._signature.bind(invocation.instance, *invocation.args, **invocation.kwargs)
        except TypeError as e:
            raise InvalidArgumentsError(f"Invalid arguments for {self.signature}: {e}") from e

        for name, value in bound.arguments.items():
            parameter = self._signature.parameters[name]
            if parameter.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue
            expected = self._type_hints.get(name)
            if not isinstance(expected, type) or expected is Any or is_protocol(expected):
                continue
            if value is None and parameter.default is None:
                continue
            if isinstance(value, expected) or isinstance(value, _PROMOTIONS.get(expected, ())):
                continue
            raise InvalidArgumentsError(
                f"Invalid argument '{name}' for {self.signature}: "
                f"expected {expected.__name__}, got {type(value).__name__}."
            )

    def __str__(self) -> str:
        return self._humanized

    def __repr__(self) -> str:
        return f"ManagedMethod({self._humanized})"
