"""
In-memory stand-ins for the Elasticsearch client and ``helpers.bulk``.

Only the query DSL subset emitted by the query builder and the suggestion
service is evaluated: bool, term, terms, range, nested, multi_match and
match_all, plus terms/stats/range/avg/nested aggregations.
"""

import copy
import math
import re
from concurrent.futures import Future


TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def tokens(text):
    return [token.lower() for token in TOKEN_RE.findall(str(text))]


def edit_distance(left, right):
    previous = list(range(len(right) + 1))
    for i, lchar in enumerate(left, 1):
        current = [i]
        for j, rchar in enumerate(right, 1):
            current.append(
                min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + (lchar != rchar))
            )
        previous = current
    return previous[-1]


def resolve(doc, path):
    """Collect every value reachable at a dotted path, flattening lists."""
    values = [doc]
    for part in path.split("."):
        next_values = []
        for value in values:
            if isinstance(value, list):
                candidates = value
            else:
                candidates = [value]
            for candidate in candidates:
                if isinstance(candidate, dict) and part in candidate:
                    next_values.append(candidate[part])
        values = next_values
    flat = []
    for value in values:
        if isinstance(value, list):
            flat.extend(item for item in value if item is not None)
        elif value is not None:
            flat.append(value)
    return flat


def _term_value(spec):
    if isinstance(spec, dict) and "value" in spec:
        return spec["value"]
    return spec


class FakeIndices:
    def __init__(self, client):
        self.client = client

    def exists(self, index):
        self.client._maybe_fail()
        return index in self.client.data

    def create(self, index, settings=None, mappings=None, **kwargs):
        self.client._maybe_fail()
        self.client.data[index] = {}
        self.client.mappings[index] = copy.deepcopy(mappings or {"properties": {}})
        self.client.created.append(index)
        return {"acknowledged": True}

    def delete(self, index, **kwargs):
        self.client._maybe_fail()
        self.client.data.pop(index, None)
        self.client.mappings.pop(index, None)
        return {"acknowledged": True}

    def get_mapping(self, index):
        self.client._maybe_fail()
        return {index: {"mappings": self.client.mappings.get(index, {"properties": {}})}}


class FakeElasticsearch:
    def __init__(self):
        self.data = {}
        self.mappings = {}
        self.created = []
        self.searches = []
        self.bulk_calls = 0
        self.available = True
        self.fail_with = None
        self.bulk_fail_with = None
        self.bulk_gate = None
        self.bulk_entered = None
        self.canned_aggregations = None
        self.indices = FakeIndices(self)

    def _maybe_fail(self):
        if self.fail_with is not None:
            raise self.fail_with

    def documents(self, index):
        return self.data.get(index, {})

    def ping(self, **kwargs):
        if self.fail_with is not None:
            return False
        return self.available

    def count(self, index, **kwargs):
        self._maybe_fail()
        return {"count": len(self.data.get(index, {}))}

    def index(self, index, id, document, **kwargs):
        self._maybe_fail()
        self.data.setdefault(index, {})[str(id)] = copy.deepcopy(document)
        return {"result": "created"}

    def delete(self, index, id, **kwargs):
        self._maybe_fail()
        found = self.data.get(index, {}).pop(str(id), None)
        return {"result": "deleted" if found is not None else "not_found"}

    def search(self, index, query=None, from_=0, size=10, sort=None, highlight=None,
               aggs=None, source=None, _source=None, track_total_hits=None, **kwargs):
        self._maybe_fail()
        self.searches.append(
            {
                "query": query,
                "from_": from_,
                "size": size,
                "sort": sort,
                "highlight": highlight,
                "aggs": aggs,
                "source": source if source is not None else _source,
            }
        )
        query = query or {"match_all": {}}
        matched = []
        for doc_id, doc in self.data.get(index, {}).items():
            ok, score = self._evaluate(query, doc)
            if ok:
                matched.append((doc_id, doc, score))

        scored = not sort or next(iter(sort[0])) == "_score"
        matched = self._sort(matched, sort)
        page = matched[from_ : from_ + size]
        source = source if source is not None else _source
        hits = []
        for doc_id, doc, score in page:
            hit = {"_id": doc_id, "_score": score if scored else float("nan")}
            if source is not False:
                if isinstance(source, list):
                    hit["_source"] = {key: doc.get(key) for key in source}
                else:
                    hit["_source"] = copy.deepcopy(doc)
            if highlight:
                fragments = self._highlight(query, doc, highlight)
                if fragments:
                    hit["highlight"] = fragments
            hits.append(hit)

        scores = [score for _, _, score in matched if scored]
        response = {
            "took": 1,
            "hits": {
                "total": {"value": len(matched), "relation": "eq"},
                "max_score": max(scores) if scores else None,
                "hits": hits,
            },
        }
        if aggs:
            if self.canned_aggregations is not None:
                response["aggregations"] = copy.deepcopy(self.canned_aggregations)
            else:
                response["aggregations"] = self._aggregate(aggs, [doc for _, doc, _ in matched])
        return response

    # query evaluation

    def _evaluate(self, query, doc):
        kind, body = next(iter(query.items()))
        if kind == "match_all":
            return True, 1.0
        if kind == "bool":
            return self._evaluate_bool(body, doc)
        if kind == "term":
            field, spec = next(iter(body.items()))
            return _term_value(spec) in resolve(doc, field), 0.0
        if kind == "terms":
            field, values = next(iter(body.items()))
            return any(value in values for value in resolve(doc, field)), 0.0
        if kind == "range":
            field, bounds = next(iter(body.items()))
            return any(self._in_range(value, bounds) for value in resolve(doc, field)), 0.0
        if kind == "nested":
            return self._evaluate_nested(body, doc)
        if kind == "multi_match":
            return self._evaluate_multi_match(body, doc)
        raise ValueError(f"Unsupported query: {kind}")

    def _evaluate_bool(self, body, doc):
        score = 0.0
        for clause in body.get("must", []):
            ok, clause_score = self._evaluate(clause, doc)
            if not ok:
                return False, 0.0
            score += clause_score
        for clause in body.get("filter", []):
            if not self._evaluate(clause, doc)[0]:
                return False, 0.0
        for clause in body.get("must_not", []):
            if self._evaluate(clause, doc)[0]:
                return False, 0.0
        should = body.get("should", [])
        if should:
            required = body.get("minimum_should_match", 0 if body.get("must") or body.get("filter") else 1)
            hits = 0
            for clause in should:
                ok, clause_score = self._evaluate(clause, doc)
                if ok:
                    hits += 1
                    score += clause_score
            if hits < required:
                return False, 0.0
        return True, score

    def _evaluate_nested(self, body, doc):
        path = body["path"]
        entries = resolve(doc, path)
        for entry in entries:
            scoped = dict(doc)
            scoped[path] = entry
            ok, score = self._evaluate(body["query"], scoped)
            if ok:
                return True, score
        return False, 0.0

    @staticmethod
    def _in_range(value, bounds):
        if isinstance(value, bool) or value is None:
            return False
        if "gte" in bounds and not value >= bounds["gte"]:
            return False
        if "gt" in bounds and not value > bounds["gt"]:
            return False
        if "lte" in bounds and not value <= bounds["lte"]:
            return False
        if "lt" in bounds and not value < bounds["lt"]:
            return False
        return True

    @staticmethod
    def _max_edits(term, fuzziness):
        if str(fuzziness).upper() != "AUTO":
            return int(fuzziness or 0)
        if len(term) < 3:
            return 0
        if len(term) <= 5:
            return 1
        return 2

    def _term_matches(self, term, candidates, prefix_field, fuzziness, prefix_length):
        for candidate in candidates:
            if candidate == term:
                return True
            if prefix_field and candidate.startswith(term):
                return True
            edits = self._max_edits(term, fuzziness)
            if edits and candidate[:prefix_length] == term[:prefix_length]:
                if edit_distance(term, candidate) <= edits:
                    return True
        return False

    def _evaluate_multi_match(self, body, doc):
        terms = tokens(body["query"])
        if not terms:
            return False, 0.0
        fuzziness = body.get("fuzziness", 0)
        prefix_length = int(body.get("prefix_length", 0))
        best = 0.0
        matched_terms = set()
        for field_spec in body["fields"]:
            field, _, boost = field_spec.partition("^")
            boost = float(boost) if boost else 1.0
            prefix_field = field.endswith(".autocomplete")
            source_field = field[: -len(".autocomplete")] if prefix_field else field
            candidates = []
            for value in resolve(doc, source_field):
                candidates.extend(tokens(value))
            field_hits = [
                term
                for term in terms
                if self._term_matches(term, candidates, prefix_field, fuzziness, prefix_length)
            ]
            matched_terms.update(field_hits)
            best = max(best, boost * len(field_hits))
        minimum = body.get("minimum_should_match")
        if minimum and str(minimum).endswith("%"):
            required = max(math.floor(len(terms) * int(str(minimum)[:-1]) / 100), 1)
        else:
            required = 1
        if len(matched_terms) < required:
            return False, 0.0
        return True, best

    # sorting and highlighting

    @staticmethod
    def _sort(matched, sort):
        if not sort:
            return sorted(matched, key=lambda item: -item[2])
        ordered = list(matched)
        for clause in reversed(sort):
            field, options = next(iter(clause.items()))
            descending = options.get("order", "asc") == "desc"
            if field == "_score":
                ordered.sort(key=lambda item: item[2], reverse=descending)
                continue
            present = [item for item in ordered if item[1].get(field) is not None]
            missing = [item for item in ordered if item[1].get(field) is None]
            present.sort(key=lambda item: item[1][field], reverse=descending)
            ordered = present + missing
        return ordered

    @staticmethod
    def _query_terms(query):
        found = []
        if isinstance(query, dict):
            for key, value in query.items():
                if key == "multi_match":
                    found.extend(tokens(value["query"]))
                else:
                    found.extend(FakeElasticsearch._query_terms(value))
        elif isinstance(query, list):
            for item in query:
                found.extend(FakeElasticsearch._query_terms(item))
        return found

    def _highlight(self, query, doc, highlight):
        terms = set(self._query_terms(query))
        if not terms:
            return {}
        pre = highlight.get("pre_tags", ["<em>"])[0]
        post = highlight.get("post_tags", ["</em>"])[0]
        fragments = {}
        for field in highlight.get("fields", {}):
            value = doc.get(field)
            if not value:
                continue
            if not any(token in terms for token in tokens(value)):
                continue
            fragments[field] = [
                TOKEN_RE.sub(
                    lambda match: f"{pre}{match.group(0)}{post}"
                    if match.group(0).lower() in terms
                    else match.group(0),
                    value,
                )
            ]
        return fragments

    # aggregations

    def _aggregate(self, aggs, docs):
        results = {}
        for name, spec in aggs.items():
            sub_aggs = spec.get("aggs")
            if "nested" in spec:
                path = spec["nested"]["path"]
                scoped = []
                for doc in docs:
                    for entry in resolve(doc, path):
                        scoped.append({path: entry})
                result = {"doc_count": len(scoped)}
                result.update(self._aggregate(sub_aggs or {}, scoped))
                results[name] = result
            elif "terms" in spec:
                field = spec["terms"]["field"]
                counts = {}
                members = {}
                for doc in docs:
                    for value in set(resolve(doc, field)):
                        counts[value] = counts.get(value, 0) + 1
                        members.setdefault(value, []).append(doc)
                ordered = sorted(counts.items(), key=lambda item: (-item[1], str(item[0])))
                buckets = []
                for key, count in ordered[: spec["terms"].get("size", 10)]:
                    bucket = {"key": key, "doc_count": count}
                    if sub_aggs:
                        bucket.update(self._aggregate(sub_aggs, members[key]))
                    buckets.append(bucket)
                results[name] = {"buckets": buckets}
            elif "stats" in spec:
                values = [v for doc in docs for v in resolve(doc, spec["stats"]["field"])]
                results[name] = {
                    "count": len(values),
                    "min": min(values) if values else None,
                    "max": max(values) if values else None,
                    "avg": sum(values) / len(values) if values else None,
                    "sum": sum(values),
                }
            elif "avg" in spec:
                values = [v for doc in docs for v in resolve(doc, spec["avg"]["field"])]
                results[name] = {"value": sum(values) / len(values) if values else None}
            elif "range" in spec:
                field = spec["range"]["field"]
                buckets = []
                for bounds in spec["range"]["ranges"]:
                    count = 0
                    for doc in docs:
                        values = resolve(doc, field)
                        if any(self._in_range(v, {"gte": bounds["from"]} if "from" in bounds else {}) and
                               self._in_range(v, {"lt": bounds["to"]} if "to" in bounds else {})
                               for v in values):
                            count += 1
                    bucket = dict(bounds)
                    bucket["doc_count"] = count
                    buckets.append(bucket)
                results[name] = {"buckets": buckets}
        return results


def fake_bulk(client, actions, raise_on_error=True, **kwargs):
    """Apply bulk actions to a ``FakeElasticsearch``; mirrors ``helpers.bulk``'s return shape."""
    actions = list(actions)
    client.bulk_calls += 1
    if client.bulk_entered is not None:
        client.bulk_entered.set()
    if client.bulk_gate is not None:
        client.bulk_gate.wait(timeout=5)
    if client.bulk_fail_with is not None:
        raise client.bulk_fail_with
    client._maybe_fail()
    success = 0
    for action in actions:
        op_type = action.get("_op_type", "index")
        index = action["_index"]
        doc_id = str(action["_id"])
        if op_type == "delete":
            client.data.get(index, {}).pop(doc_id, None)
        else:
            client.data.setdefault(index, {})[doc_id] = copy.deepcopy(action["_source"])
        success += 1
    return success, []


class InlineExecutor:
    """Runs submitted work immediately on the calling thread."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future

    def shutdown(self, wait=True):
        pass
