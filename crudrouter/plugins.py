"""
Router plugins

A plugin configures a router, for example by adding global middleware or routes:

    class AuditPlugin(Plugin):
        def apply(self, router):
            router.add_global_middleware(audit)

    router.add_plugin(AuditPlugin())
    router.add_plugin(lambda router: router.set_global_error_handler(my_handler))

Objects with a register(router) method are accepted as well.
"""
import abc
from typing import Any, Callable


class Plugin(abc.ABC):
    @abc.abstractmethod
    def apply(self, router) -> Any:
        """configure router"""


class FunctionPlugin(Plugin):
    """
    Adapter for plugins implemented as a function of the router
    """

    def __init__(self, func: Callable) -> None:
        self.func = func

    def __repr__(self) -> str:
        return f"<FunctionPlugin {getattr(self.func, '__name__', self.func)}>"

    def apply(self, router) -> Any:
        return self.func(router)


def as_plugin(plugin) -> Plugin:
    """
    :param plugin: Plugin instance, object with a register(router) method or function
    :return: Plugin
    """
    if isinstance(plugin, Plugin):
        return plugin
    register = getattr(plugin, "register", None)
    if callable(register):
        return FunctionPlugin(register)
    if callable(plugin):
        return FunctionPlugin(plugin)
    raise TypeError(f"Invalid plugin {plugin}: expected a Plugin, an object with a register method or a function")
