from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Union

import numpy as np

from procurement.cache import CacheManager
from procurement.config import OptimizerConfig
from procurement.data_source import AccountDataSource
from procurement.errors import (
    NetworkNotBuiltError,
    OptimizationFailedError,
    OptimizationTimeoutError,
    PathNotFoundError,
    SupplyChainError,
    ValidationFailedError,
    validate_request,
)
from procurement.events import (
    CachePayload,
    ErrorPayload,
    EventBus,
    EventType,
    Listener,
    NetworkBuiltPayload,
    NetworkUpdatedPayload,
    PathFoundPayload,
    PathOptimizedPayload,
    PerformanceWarningPayload,
)
from procurement.models import (
    BatchItem,
    OptimizationResult,
    PathFindOptions,
    PathValidationResult,
    ProcurementPath,
    PurchaseRequest,
    RequestOptions,
    SearchStrategy,
)
from procurement.network_builder import NetworkBuilder, NetworkSnapshot
from procurement.path_finder import PathFinder
from procurement.path_optimizer import PathOptimizer

logger = logging.getLogger(__name__)


class SupplyChainPathOptimizer:
    """
    Facade over network builder, path finder, path optimizer and caches.

    Collaborators are created from `config` unless injected. Public lookups
    are coroutines; graph search and optimization run in worker threads,
    bounded by `performance.max_execution_time_s`. Background jobs (network
    rebuild, performance sampling, cache cleanup) are asyncio tasks started by
    `start()` and cancelled by `destroy()`.

    Usage:
        async with SupplyChainPathOptimizer(store) as engine:
            path = await engine.find_optimal_path("B1", "P1", 5)
    """

    SOURCE = "supply_chain_optimizer"

    def __init__(
        self,
        source: AccountDataSource,
        config: Optional[OptimizerConfig] = None,
        *,
        events: Optional[EventBus] = None,
        caches: Optional[CacheManager] = None,
        builder: Optional[NetworkBuilder] = None,
        finder: Optional[PathFinder] = None,
        path_optimizer: Optional[PathOptimizer] = None,
    ):
        self.config = config or OptimizerConfig()
        self.events = events or EventBus()
        self.caches = caches or CacheManager(self.config.cache)
        self.builder = builder or NetworkBuilder(source, self.config)
        self.finder = finder or PathFinder(self.builder, self.config)
        self.optimizer = path_optimizer or PathOptimizer(self.config)

        self._tasks: list[asyncio.Task] = []
        self._start_lock = asyncio.Lock()
        self._started = False

    async def __aenter__(self) -> "SupplyChainPathOptimizer":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.destroy()

    # --- lifecycle ---

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        async with self._start_lock:
            if self._started:
                return
            if not self.builder.is_built:
                try:
                    await self.rebuild_network()
                except SupplyChainError as exc:
                    raise NetworkNotBuiltError(
                        "initial network build failed", details={"error": str(exc)}
                    ) from exc
            self._start_timers()
            self._started = True
            logger.info(f"optimizer started timers={len(self._tasks)} version={self.builder.version}")

    async def destroy(self) -> None:
        tasks, self._tasks = self._tasks, []
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.events.clear()
        self.caches.clear()
        self._started = False
        logger.info("optimizer destroyed")

    async def _ensure_started(self) -> None:
        if not self._started:
            await self.start()

    def _start_timers(self) -> None:
        net = self.config.network
        perf = self.config.performance
        if net.auto_rebuild and net.rebuild_interval_s > 0:
            self._tasks.append(
                asyncio.create_task(
                    self._periodic("network_rebuild", net.rebuild_interval_s, self.rebuild_network),
                    name="network-rebuild",
                )
            )
        if perf.monitor_interval_s > 0:
            self._tasks.append(
                asyncio.create_task(
                    self._periodic("performance_monitor", perf.monitor_interval_s, self._sample_async),
                    name="performance-monitor",
                )
            )
        if self.config.cache.cleanup_interval_s > 0:
            self._tasks.append(
                asyncio.create_task(
                    self._periodic("cache_cleanup", self.config.cache.cleanup_interval_s, self._cleanup_async),
                    name="cache-cleanup",
                )
            )

    async def _periodic(self, name: str, interval_s: float, job: Callable[[], Awaitable[Any]]) -> None:
        while True:
            await asyncio.sleep(interval_s)
            try:
                await job()
            except Exception as exc:
                # background failures keep the last good state; the loop keeps running
                logger.warning(f"background job failed job={name} error={exc}")
                self._emit_error(name, exc, {})

    async def _sample_async(self) -> None:
        self.sample_performance()

    async def _cleanup_async(self) -> None:
        removed = self.caches.cleanup()
        if removed:
            logger.debug(f"cache cleanup removed={removed}")

    # --- events ---

    def on(self, event_type: EventType, listener: Listener) -> Callable[[], None]:
        return self.events.subscribe(event_type, listener)

    def off(self, event_type: EventType, listener: Listener) -> bool:
        return self.events.unsubscribe(event_type, listener)

    def _emit(self, event_type: EventType, payload: Any) -> None:
        self.events.emit(event_type, self.SOURCE, payload)

    def _emit_error(self, operation: str, exc: BaseException, context: Mapping[str, Any]) -> None:
        kind = exc.kind.value if isinstance(exc, SupplyChainError) else type(exc).__name__
        self._emit(
            EventType.ERROR_OCCURRED,
            ErrorPayload(operation=operation, kind=kind, message=str(exc), context=dict(context)),
        )

    # --- network ---

    async def rebuild_network(self) -> NetworkSnapshot:
        try:
            snap = await asyncio.to_thread(self.builder.build_graph)
        except SupplyChainError as exc:
            self._emit_error("rebuild_network", exc, {"version": self.builder.version})
            raise
        self.caches.clear()
        self._emit(
            EventType.NETWORK_BUILT,
            NetworkBuiltPayload(
                version=snap.version,
                node_count=snap.node_count,
                edge_count=snap.edge_count,
                build_time_ms=self.builder.last_build_ms,
            ),
        )
        return snap

    async def update_network(self, account_ids: Iterable[str]) -> None:
        ids = list(dict.fromkeys(account_ids))
        if not ids:
            return
        await self._ensure_started()
        products = self._products_of(self.builder.snapshot, ids)

        incremental = self.config.network.incremental_update
        if incremental:
            try:
                snap = await asyncio.to_thread(self.builder.incremental_update, ids)
            except SupplyChainError as exc:
                logger.warning(f"incremental update failed, falling back to full rebuild accounts={ids} error={exc}")
                incremental = False
                snap = await self.rebuild_network()
        else:
            snap = await self.rebuild_network()

        products |= self._products_of(snap, ids)
        tags = [f"user:{a}" for a in ids] + [f"product:{p}" for p in sorted(products)]
        invalidated = self.caches.invalidate_tags(tags)
        self._emit(
            EventType.NETWORK_UPDATED,
            NetworkUpdatedPayload(
                version=snap.version,
                account_ids=tuple(ids),
                incremental=incremental,
                invalidated_entries=invalidated,
            ),
        )

    @staticmethod
    def _products_of(snap: NetworkSnapshot, ids: Iterable[str]) -> set[str]:
        out: set[str] = set()
        for a in ids:
            if snap.has_account(a):
                data = snap.account(a)
                out.update(data["prices"])
                out.update(data["stock"])
        return out

    # --- lookups ---

    async def find_optimal_path(
        self,
        buyer_id: str,
        product_id: str,
        quantity: int,
        options: Optional[RequestOptions] = None,
    ) -> Optional[ProcurementPath]:
        validate_request(buyer_id, product_id, quantity)
        options = options or RequestOptions()
        await self._ensure_started()

        key = self._cache_key("optimal", buyer_id, product_id, quantity, options)
        if options.use_cache:
            cached = self.caches.paths.get(key)
            if cached is not None:
                self._emit(EventType.CACHE_HIT, CachePayload(cache_name="paths", key=key))
                return cached
            self._emit(EventType.CACHE_MISS, CachePayload(cache_name="paths", key=key))

        start = time.perf_counter()
        context = self._context(buyer_id, product_id, quantity, options)
        path = await self._run("find_optimal_path", context, self._optimal, buyer_id, product_id, quantity, options)
        if path is None:
            return None

        if options.use_cache:
            self.caches.paths.set(key, path, tags=self._tags(product_id, [path]))
        self._emit(
            EventType.PATH_FOUND,
            PathFoundPayload(
                buyer_id=buyer_id,
                product_id=product_id,
                quantity=quantity,
                path_id=path.path_id,
                overall_score=path.overall_score,
                elapsed_ms=(time.perf_counter() - start) * 1000.0,
            ),
        )
        return path

    async def find_multiple_paths(
        self,
        buyer_id: str,
        product_id: str,
        quantity: int,
        options: Optional[RequestOptions] = None,
    ) -> OptimizationResult:
        validate_request(buyer_id, product_id, quantity)
        options = options or RequestOptions()
        await self._ensure_started()

        key = self._cache_key("multiple", buyer_id, product_id, quantity, options)
        if options.use_cache:
            cached = self.caches.paths.get(key)
            if cached is not None:
                self._emit(EventType.CACHE_HIT, CachePayload(cache_name="paths", key=key))
                return cached
            self._emit(EventType.CACHE_MISS, CachePayload(cache_name="paths", key=key))

        start = time.perf_counter()
        context = self._context(buyer_id, product_id, quantity, options)
        result = await self._run(
            "find_multiple_paths", context, self._multiple, buyer_id, product_id, quantity, options
        )
        if options.use_cache:
            self.caches.paths.set(key, result, tags=self._tags(product_id, result.paths))
        self._emit(
            EventType.PATH_OPTIMIZED,
            PathOptimizedPayload(
                buyer_id=buyer_id,
                product_id=product_id,
                quantity=quantity,
                strategy=result.strategy.value,
                path_count=len(result.paths),
                pareto_size=len(result.pareto_front),
                elapsed_ms=(time.perf_counter() - start) * 1000.0,
            ),
        )
        return result

    async def batch_optimize(
        self, requests: Iterable[Union[PurchaseRequest, Mapping[str, Any]]]
    ) -> list[BatchItem]:
        reqs = [r if isinstance(r, PurchaseRequest) else PurchaseRequest(**r) for r in requests]
        perf = self.config.performance
        size = max(1, perf.batch_size)
        items: list[BatchItem] = []
        for i in range(0, len(reqs), size):
            if i:
                await asyncio.sleep(perf.batch_delay_s)
            chunk = reqs[i : i + size]
            items.extend(await asyncio.gather(*(self._batch_one(r) for r in chunk)))
        failed = sum(1 for it in items if not it.ok)
        logger.info(f"batch done requests={len(reqs)} ok={len(items) - failed} failed={failed}")
        return items

    async def _batch_one(self, req: PurchaseRequest) -> BatchItem:
        try:
            path = await self.find_optimal_path(req.buyer_id, req.product_id, req.quantity, req.options)
        except SupplyChainError as exc:
            return BatchItem(request=req, error=exc)
        return BatchItem(request=req, result=path)

    async def validate_path(self, path: ProcurementPath) -> PathValidationResult:
        await self._ensure_started()
        return self.finder.validate_path(path)

    # --- worker-thread bodies ---

    def _find_options(self, options: RequestOptions) -> PathFindOptions:
        return PathFindOptions(
            max_depth=options.max_depth,
            max_paths=options.max_paths,
            search_strategy=options.search_strategy or SearchStrategy.BFS,
            preferred_suppliers=tuple(options.preferred_suppliers),
            blacklisted_suppliers=tuple(options.blacklisted_suppliers),
        )

    def _optimal(
        self, buyer_id: str, product_id: str, quantity: int, options: RequestOptions
    ) -> Optional[ProcurementPath]:
        candidates = self.finder.find_paths(buyer_id, product_id, quantity, self._find_options(options))
        if not candidates:
            logger.info(f"no procurement path buyer={buyer_id} product={product_id} qty={quantity}")
            return None
        result = self.optimizer.optimize(candidates, weights=options.weights, strategy=options.strategy)

        # offspring of the genetic search are not routes in the graph; only discovered paths are returned
        ranked = [p for p in result.paths if not p.is_synthetic]
        if not ranked:
            by_id = {p.path_id: p for p in candidates}
            ranked = [by_id[result.paths[0].source_path_id]]
        for path in ranked:
            validation = self.finder.validate_path(path)
            if validation.is_valid:
                return path
            logger.warning(f"discarding invalid path path={path.describe()} reasons={list(validation.reasons)}")
        raise ValidationFailedError(
            "no candidate path passed validation",
            details={"buyer_id": buyer_id, "product_id": product_id, "quantity": quantity},
        )

    def _multiple(
        self, buyer_id: str, product_id: str, quantity: int, options: RequestOptions
    ) -> OptimizationResult:
        candidates = self.finder.find_paths(buyer_id, product_id, quantity, self._find_options(options))
        if not candidates:
            raise PathNotFoundError(
                "no procurement path found",
                details={"buyer_id": buyer_id, "product_id": product_id, "quantity": quantity},
            )
        return self.optimizer.optimize(candidates, weights=options.weights, strategy=options.strategy)

    async def _run(self, operation: str, context: dict[str, Any], fn: Callable[..., Any], *args: Any) -> Any:
        start = time.perf_counter()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args), timeout=self.config.performance.max_execution_time_s
            )
        except asyncio.TimeoutError as exc:
            err = OptimizationTimeoutError(f"{operation} timed out", details=context)
            self._fail(operation, err, context, start)
            raise err from exc
        except SupplyChainError as exc:
            self._fail(operation, exc, context, start)
            raise
        except Exception as exc:
            err = OptimizationFailedError(f"{operation} failed: {exc}", details=context)
            self._fail(operation, err, context, start)
            raise err from exc

    def _fail(self, operation: str, exc: SupplyChainError, context: dict[str, Any], start: float) -> None:
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        fields = " ".join(f"{k}={v}" for k, v in context.items())
        logger.error(f"{operation} failed kind={exc.kind.value} {fields} elapsed_ms={elapsed_ms:.1f} error={exc}")
        self._emit_error(operation, exc, {**context, "elapsed_ms": elapsed_ms})

    def _context(self, buyer_id: str, product_id: str, quantity: int, options: RequestOptions) -> dict[str, Any]:
        strategy = options.strategy or self.config.default_strategy
        return {"buyer_id": buyer_id, "product_id": product_id, "quantity": quantity, "strategy": strategy.value}

    @staticmethod
    def _cache_key(kind: str, buyer_id: str, product_id: str, quantity: int, options: RequestOptions) -> str:
        token = json.dumps(options.cache_token(), sort_keys=True, default=str)
        digest = hashlib.sha1(token.encode("utf-8")).hexdigest()[:16]
        return f"{kind}:{buyer_id}:{product_id}:{quantity}:{digest}"

    @staticmethod
    def _tags(product_id: str, paths: Iterable[ProcurementPath]) -> list[str]:
        accounts: set[str] = set()
        for p in paths:
            accounts.update(p.node_ids)
        return [f"product:{product_id}"] + [f"user:{a}" for a in sorted(accounts)]

    # --- price / inventory lookups ---

    async def product_inventory(self, product_id: str) -> dict[str, Any]:
        await self._ensure_started()
        snap = self.builder.snapshot
        return self.caches.inventory.get_or_set(
            f"inventory:{product_id}",
            lambda: _inventory_summary(snap, product_id),
            tags=self._product_tags(snap, product_id),
        )

    async def product_price_summary(self, product_id: str) -> dict[str, Any]:
        await self._ensure_started()
        snap = self.builder.snapshot
        return self.caches.prices.get_or_set(
            f"price:{product_id}",
            lambda: _price_summary(snap, product_id),
            tags=self._product_tags(snap, product_id),
        )

    async def warmup_cache(self, products: Optional[Iterable[str]] = None, *, limit: int = 50) -> int:
        """
        Precomputes price and inventory summaries. Without `products`, warms the
        `limit` products held by the most accounts.
        """
        await self._ensure_started()
        snap = self.builder.snapshot
        if products is None:
            products = sorted(snap.products(), key=lambda p: (-len(snap.holders_of(p)), p))[:limit]
        warmed = 0
        for p in products:
            tags = self._product_tags(snap, p)
            self.caches.prices.set(f"price:{p}", _price_summary(snap, p), tags=tags)
            self.caches.inventory.set(f"inventory:{p}", _inventory_summary(snap, p), tags=tags)
            warmed += 2
        logger.info(f"cache warmup entries={warmed}")
        return warmed

    @staticmethod
    def _product_tags(snap: NetworkSnapshot, product_id: str) -> list[str]:
        return [f"product:{product_id}"] + [f"user:{a}" for a in snap.holders_of(product_id)]

    # --- health / metrics ---

    def get_performance_metrics(self) -> dict[str, Any]:
        net = self.builder.metrics.snapshot()
        net.update(
            version=self.builder.version,
            last_build_ms=self.builder.last_build_ms,
            nodes=self.builder.snapshot.node_count if self.builder.is_built else 0,
            edges=self.builder.snapshot.edge_count if self.builder.is_built else 0,
        )
        opt = self.optimizer.metrics.snapshot()
        opt["strategy_usage"] = dict(self.optimizer.strategy_usage)
        return {
            "network_builder": net,
            "path_finder": self.finder.metrics.snapshot(),
            "path_optimizer": opt,
            "cache": self.caches.stats(),
        }

    def sample_performance(self) -> list[PerformanceWarningPayload]:
        threshold = self.config.performance.slow_response_ms
        warnings: list[PerformanceWarningPayload] = []
        for tracker in (self.builder.metrics, self.finder.metrics, self.optimizer.metrics):
            avg = tracker.average_ms
            if avg > threshold:
                payload = PerformanceWarningPayload(
                    component=tracker.name, metric="average_ms", value=avg, threshold=threshold
                )
                warnings.append(payload)
                logger.warning(f"slow component component={tracker.name} average_ms={avg:.1f}")
                self._emit(EventType.PERFORMANCE_WARNING, payload)
        return warnings

    async def health_check(self) -> dict[str, Any]:
        components = {
            "network_builder": self.builder.health_check(),
            "path_finder": self.finder.health_check(),
            "path_optimizer": self.optimizer.health_check(),
            "cache": self.caches.health_check(),
        }
        return {
            "healthy": all(c["healthy"] for c in components.values()),
            "components": components,
            "metrics": self.get_performance_metrics(),
            "timers": sum(1 for t in self._tasks if not t.done()),
        }


def _inventory_summary(snap: NetworkSnapshot, product_id: str) -> dict[str, Any]:
    holders = {a: snap.stock_of(a, product_id) for a in snap.holders_of(product_id)}
    return {
        "product_id": product_id,
        "total_stock": int(sum(holders.values())),
        "holders": len(holders),
        "by_account": holders,
    }


def _price_summary(snap: NetworkSnapshot, product_id: str) -> dict[str, Any]:
    quotes = [
        q for q in (snap.price_of(a, product_id) for a in snap.g.nodes) if q is not None
    ]
    if not quotes:
        return {"product_id": product_id, "quotes": 0, "min": None, "max": None, "mean": None}
    return {
        "product_id": product_id,
        "quotes": len(quotes),
        "min": float(min(quotes)),
        "max": float(max(quotes)),
        "mean": float(np.mean(quotes)),
    }
