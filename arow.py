# binary classification with AROW over dense mean/covariance arrays
# the instances consist of a label in {-1, +1} and a sparse feature vector of (index, weight) pairs

import gzip
import logging
import math
import random
import sys
from collections import namedtuple

import numpy

logger = logging.getLogger(__name__)

DEFAULT_R = 0.1
DEFAULT_EPOCHS = 3
DEFAULT_SEED = 13
TRAIN_RATIO = 0.75
NEWS20_DIMENSION = 1355192
DEFAULT_DATA_FILE = "news20.binary"


class AROWError(Exception):
    pass


class InvalidArgumentError(AROWError, ValueError):
    pass


class IndexOutOfRangeError(AROWError, IndexError):
    pass


class MalformedInputError(AROWError, ValueError):
    pass


Feature = namedtuple("Feature", ["index", "weight"])

EpochResult = namedtuple("EpochResult", ["epoch", "mistakes", "errorRate", "zeroFraction"])


class Instance(object):
    """
    A data instance to be used with AROW. Each instance is composed of a
    sparse feature vector (a list of (index, weight) pairs) and a label
    which is either -1 or +1.
    """

    def __init__(self, featureVector, label):
        self.featureVector = featureVector
        self.label = label

    def __str__(self):
        retString = "+1" if self.label > 0 else "-1"
        features = []
        for index, weight in self.featureVector:
            features.append(str(index) + ":" + str(weight))
        if features:
            retString += " " + " ".join(features)
        return retString

    def __repr__(self):
        return "Instance(%r, %r)" % (self.featureVector, self.label)


class AROW(object):
    """
    Adaptive Regularization of Weight Vectors for binary classification.

    Keeps a mean (weight) vector and a diagonal approximation of the
    covariance, both dense over ``dimension`` features. Untouched features
    have mean 0.0 and covariance 1.0.

    See K. Crammer, A. Kulesza and M. Dredze, "Adaptive regularization of
    weight vectors", NIPS 2009.
    """

    def __init__(self, dimension, r=DEFAULT_R):
        if isinstance(dimension, bool) or not isinstance(dimension, (int, numpy.integer)) or dimension <= 0:
            raise InvalidArgumentError("dimension must be a positive integer, got %r" % (dimension,))
        try:
            r = float(r)
        except (TypeError, ValueError):
            raise InvalidArgumentError("r must be a positive number, got %r" % (r,))
        if not r > 0 or math.isinf(r):
            raise InvalidArgumentError("r must be a positive number, got %r" % (r,))
        self._dimension = int(dimension)
        self._r = r
        self.mean = numpy.zeros(self._dimension, dtype=numpy.float64)
        self.cov = numpy.ones(self._dimension, dtype=numpy.float64)

    @property
    def dimension(self):
        return self._dimension

    @property
    def r(self):
        return self._r

    def _unpack(self, featureVector):
        # split the (index, weight) pairs into index and weight arrays, checking both
        pairs = list(featureVector)
        indices = numpy.empty(len(pairs), dtype=numpy.int64)
        weights = numpy.empty(len(pairs), dtype=numpy.float64)
        for i, (index, weight) in enumerate(pairs):
            if isinstance(index, bool) or not isinstance(index, (int, numpy.integer)):
                raise IndexOutOfRangeError("feature index must be an integer, got %r" % (index,))
            if index < 0 or index >= self._dimension:
                raise IndexOutOfRangeError(
                    "feature index %d outside [0, %d)" % (index, self._dimension))
            try:
                weight = float(weight)
            except (TypeError, ValueError):
                raise InvalidArgumentError("feature %d has non-numeric weight %r" % (index, weight))
            if not math.isfinite(weight):
                raise InvalidArgumentError("feature %d has non-finite weight %r" % (index, weight))
            indices[i] = index
            weights[i] = weight
        return indices, weights

    def _margin(self, indices, weights):
        # margin = x^T mean
        with numpy.errstate(over="ignore", invalid="ignore"):
            margin = float(numpy.dot(self.mean[indices], weights))
        if not math.isfinite(margin):
            raise InvalidArgumentError("margin overflows for this feature vector")
        return margin

    def _confidence(self, indices, weights):
        # confidence = x^T cov x, with cov diagonal
        with numpy.errstate(over="ignore", invalid="ignore"):
            confidence = float(numpy.dot(self.cov[indices], weights * weights))
        if not math.isfinite(confidence):
            raise InvalidArgumentError("confidence overflows for this feature vector")
        return confidence

    def getMargin(self, featureVector):
        """Dot product of the mean vector with the feature vector."""
        indices, weights = self._unpack(featureVector)
        return self._margin(indices, weights)

    def getConfidence(self, featureVector):
        """Quadratic form of the feature vector against the diagonal covariance."""
        indices, weights = self._unpack(featureVector)
        return self._confidence(indices, weights)

    def predict(self, featureVector):
        # a margin of exactly zero goes to the negative class
        return 1 if self.getMargin(featureVector) > 0 else -1

    def update(self, featureVector, label):
        """
        Update the mean and covariance with one labeled example.

        Returns 1 if the example was misclassified before the update (the
        margin was on the wrong side of zero) and 0 otherwise. Examples that
        already have a margin of at least 1 leave the model untouched.
        """
        if isinstance(label, bool) or label not in (-1, 1):
            raise InvalidArgumentError("label must be -1 or +1, got %r" % (label,))
        indices, weights = self._unpack(featureVector)

        margin = self._margin(indices, weights)
        if margin * label >= 1:
            return 0

        confidence = self._confidence(indices, weights)
        beta = 1.0 / (confidence + self._r)
        alpha = (1.0 - label * margin) * beta
        if not math.isfinite(alpha):
            raise InvalidArgumentError("update step overflows for this feature vector")

        # compute both steps before touching the state, so a rejected update changes nothing
        with numpy.errstate(over="ignore", divide="ignore", invalid="ignore"):
            # the mean update uses the covariance from before this example
            meanStep = alpha * self.cov[indices] * label * weights
            # repeated indices accumulate their precision like sequential updates would
            uniqueIndices, inverse = numpy.unique(indices, return_inverse=True)
            precisionGain = numpy.bincount(inverse.ravel(), weights=weights * weights) / self._r
            newCov = 1.0 / (1.0 / self.cov[uniqueIndices] + precisionGain)
        if not numpy.all(numpy.isfinite(meanStep)):
            raise InvalidArgumentError("mean update overflows for this feature vector")
        if not numpy.all(newCov > 0):
            raise InvalidArgumentError("covariance underflows for this feature vector")

        numpy.add.at(self.mean, indices, meanStep)
        self.cov[uniqueIndices] = newCov

        return 1 if margin * label < 0 else 0

    def countZero(self):
        return int(numpy.count_nonzero(self.mean == 0.0))

    def batchPredict(self, instances):
        """Count the instances whose predicted label differs from the true one."""
        mistakes = 0
        for instance in instances:
            if self.predict(instance.featureVector) != instance.label:
                mistakes += 1
        return mistakes

    def train(self, instances, rounds=1, shuffling=False, rng=None):
        if shuffling and rng is None:
            raise InvalidArgumentError("shuffling requires a random generator")
        instances = list(instances)
        errorsPerRound = []
        for r in range(rounds):
            if shuffling:
                rng.shuffle(instances)
            errorsInRound = 0
            for instance in instances:
                errorsInRound += self.update(instance.featureVector, instance.label)
            errorsPerRound.append(errorsInRound)
            if instances:
                logger.info("Training error rate in round %d : %f", r, float(errorsInRound) / len(instances))
        return errorsPerRound

    # train by optimizing the r parameter
    @staticmethod
    def trainOpt(instances, dimension, rounds=10, paramValues=(0.01, 0.1, 1.0, 10, 100), heldout=0.2, rng=None):
        if not paramValues:
            raise InvalidArgumentError("paramValues must not be empty")
        if not 0 < heldout < 1:
            raise InvalidArgumentError("heldout must be in (0, 1), got %r" % (heldout,))
        instances = list(instances)
        shuffling = rng is not None
        logger.info("Training with %d instances", len(instances))

        # this value will be kept if nothing seems to work better
        bestParam = paramValues[0]
        lowestMistakes = float("inf")
        trainingInstances, testingInstances = split_data(instances, 1 - heldout)
        for param in paramValues:
            classifier = AROW(dimension, param)
            classifier.train(trainingInstances, rounds, shuffling, rng)
            devMistakes = classifier.batchPredict(testingInstances)
            logger.info("param=%s: %d mistakes on %d held-out instances", param, devMistakes, len(testingInstances))
            if devMistakes < lowestMistakes:
                bestParam = param
                lowestMistakes = devMistakes

        logger.info("Training with param=%s on all the data", bestParam)
        finalClassifier = AROW(dimension, bestParam)
        finalClassifier.train(instances, rounds, shuffling, rng)
        return finalClassifier


def instance_from_svm_input(line, lineNumber=None):
    """
    Parse one line of the form ``<sign>... idx:weight idx:weight ...``.

    Blank lines, comment lines starting with ``#`` and lines without any
    feature token give None. Tokens that do not split into exactly two
    colon-separated parts are skipped.
    """
    line = line.rstrip("\r\n")
    if not line.strip():
        return None
    if line[0] == "#":
        return None

    where = "" if lineNumber is None else " on line %d" % lineNumber
    if line[0] == "+":
        label = 1
    elif line[0] == "-":
        label = -1
    else:
        raise MalformedInputError("expected '+' or '-' at the start%s: %r" % (where, line))

    featureVector = []
    # the first column holds the label
    for column in line.split()[1:]:
        parts = column.split(":")
        if len(parts) != 2:
            continue
        # int() and float() would accept digit separators
        if "_" in column:
            raise MalformedInputError("bad feature %r%s" % (column, where))
        try:
            index = int(parts[0])
            weight = float(parts[1])
        except ValueError:
            raise MalformedInputError("bad feature %r%s" % (column, where))
        if index < 0:
            raise MalformedInputError("negative feature index %r%s" % (column, where))
        if not math.isfinite(weight):
            raise MalformedInputError("non-finite feature weight %r%s" % (column, where))
        featureVector.append(Feature(index, weight))

    if not featureVector:
        return None
    return Instance(featureVector, label)


def read_data(lines):
    instances = []
    for lineNumber, line in enumerate(lines, 1):
        instance = instance_from_svm_input(line, lineNumber)
        if instance is not None:
            instances.append(instance)
    logger.debug("Read %d instances", len(instances))
    return instances


def read_data_file(filename):
    if filename.endswith(".gz"):
        dataFile = gzip.open(filename, "rt")
    else:
        dataFile = open(filename)
    with dataFile:
        return read_data(dataFile)


def shuffle_data(instances, rng):
    shuffled = list(instances)
    rng.shuffle(shuffled)
    return shuffled


def split_data(instances, trainRatio=TRAIN_RATIO):
    if not 0 <= trainRatio <= 1:
        raise InvalidArgumentError("trainRatio must be in [0, 1], got %r" % (trainRatio,))
    instances = list(instances)
    trainSize = int(len(instances) * trainRatio)
    return instances[:trainSize], instances[trainSize:]


def run_epochs(classifier, trainingInstances, testingInstances, epochs=DEFAULT_EPOCHS, rng=None):
    """
    Train for one pass over the training instances per epoch, then count the
    mistakes on the testing instances without updating.
    """
    results = []
    for epoch in range(epochs):
        classifier.train(trainingInstances, 1, rng is not None, rng)
        mistakes = classifier.batchPredict(testingInstances)
        errorRate = float(mistakes) / len(testingInstances) if testingInstances else 0.0
        zeroFraction = classifier.countZero() / float(classifier.dimension)
        results.append(EpochResult(epoch, mistakes, errorRate, zeroFraction))
    return results


def main(argv=None):
    if argv is None:
        argv = sys.argv[1:]
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    filename = argv[0] if argv else DEFAULT_DATA_FILE

    rng = random.Random(DEFAULT_SEED)
    instances = shuffle_data(read_data_file(filename), rng)
    trainingInstances, testingInstances = split_data(instances, TRAIN_RATIO)

    print("train: %d" % len(trainingInstances))
    print("test: %d" % len(testingInstances))

    classifier = AROW(NEWS20_DIMENSION, DEFAULT_R)
    for result in run_epochs(classifier, trainingInstances, testingInstances, DEFAULT_EPOCHS):
        print("zero = %f" % result.zeroFraction)
        print("%dth iteration:" % result.epoch)
        print("Number of mistake: %d" % result.mistakes)
        print("Error rate: %f" % result.errorRate)
        print("")
    return 0


if __name__ == "__main__":
    sys.exit(main())
